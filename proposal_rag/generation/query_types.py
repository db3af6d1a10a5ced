"""
Query-type detection.

Questions are matched against ordered regex groups; the first group with a
hit decides the type, and anything unmatched is GENERAL. The detected type
shapes the answer format and keys feedback statistics.
"""
from __future__ import annotations

import re

from proposal_rag.schemas import QueryType


def _compile(*patterns: str) -> list[re.Pattern[str]]:
    return [re.compile(p, re.I) for p in patterns]


_WE = r"(we|you)"
_OUR = r"(our|your)"

# Order matters: earlier groups win
QUERY_TYPE_PATTERNS: list[tuple[QueryType, list[re.Pattern[str]]]] = [
    (
        QueryType.METHODOLOGY,
        _compile(
            rf"how (do )?{_WE} (typically|usually|normally)",
            rf"how (do )?{_WE} approach.+(typically|usually|normally)",
            rf"(can you )?tell me how {_WE} approach",
            rf"what is {_OUR} (typical|usual|standard|normal) approach",
            rf"what is {_OUR} (methodology|framework|process for)",
            rf"how (do|should) {_WE} (approach|handle|conduct|structure)",
            rf"what are {_OUR} best practices",
            rf"what steps do {_WE} take",
            rf"share {_OUR} (typical|usual|standard|normal|approach)",
            rf"explain {_OUR} methodology",
            rf"{_OUR} (typical|usual|standard) approach",
            r"(typically|usually|normally).+(how|approach|method)",
        ),
    ),
    (
        QueryType.CLIENT_EXAMPLES,
        _compile(
            r"have we done .+ for .+ clients?",
            r"have we worked with .+ clients",
            r"do we have experience with .+ clients",
            r"have we done .+ work for",
            r"clients we.+ve worked with",
            r"experience working with .+ clients",
        ),
    ),
    (
        QueryType.PROJECT_LIST,
        _compile(
            r"list all projects for",
            r"tell me all the projects .+ with",
            r"show me all .+ projects",
            r"what projects have we done (with|for)",
            r"all of our work (with|for)",
            r"everything we.+ve done (with|for)",
        ),
    ),
    (
        QueryType.DELIVERABLES,
        _compile(
            r"what (deliverables|outputs|artifacts)",
            r"what do we (deliver|provide)",
            r"(typical|standard) deliverables",
            r"what are the outputs",
            r"what documents do we",
        ),
    ),
    (
        QueryType.PRICING,
        _compile(
            r"what.+s our (typical|usual|standard|normal) fee",
            r"pricing",
            r"fee structure",
            r"(how much|what) do we charge",
            r"cost",
            r"budget",
            r"what.+s the fee",
        ),
    ),
    (
        QueryType.RISKS,
        _compile(
            r"what are (the )?(common |typical )?risks",
            r"risks we flag",
            r"what risks do we",
            r"mitigation",
            r"challenges",
            r"what could go wrong",
            r"potential issues",
        ),
    ),
    (
        QueryType.PROPOSAL_LANGUAGE,
        _compile(
            r"standard (section|text)",
            r"(proposal|sample) language",
            r"do we have (a )?standard",
            r"boilerplate",
            r"template",
            r"copy for",
        ),
    ),
    (
        QueryType.INDUSTRY_EXPERIENCE,
        _compile(
            r"what work have we done in .+ (industry|sector)",
            r"(experience|clients) in .+ (industry|sector)",
            r"(healthcare|financial|technology|manufacturing|retail|education|government|nonprofit)",
            r"(industry|sector) experience",
        ),
    ),
    (
        QueryType.OUTCOMES,
        _compile(
            r"what (results|outcomes|impact)",
            r"what do we achieve",
            r"typical results",
            r"success stories",
            r"what are the benefits",
            r"impact",
            r"\broi\b",
            r"return on investment",
        ),
    ),
    (
        QueryType.GEOGRAPHIC,
        _compile(
            r"(experience .+|clients|work) in .+ (region|country|state|city)",
            r"(international|global|domestic|local)",
            r"(north america|south america|latin america|middle east|europe|asia|africa|australia)",
        ),
    ),
]


def detect_query_type(question: str) -> QueryType:
    """Classify a question; GENERAL when nothing matches."""
    for query_type, patterns in QUERY_TYPE_PATTERNS:
        if any(p.search(question) for p in patterns):
            return query_type
    return QueryType.GENERAL
