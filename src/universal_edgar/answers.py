"""
Canned answers for pipeline states that never reach synthesis.
"""
from __future__ import annotations

import time
from typing import Optional

from universal_edgar.models import (
    AnswerAssessment,
    AnswerMetadata,
    CoverageGap,
    DataFreshness,
    FollowUpSuggestions,
    KnowledgeSet,
    StructuredQuery,
    UniversalAnswer,
)


def _query_id(prefix: str) -> str:
    return f"{prefix}_{int(time.time() * 1000)}"


def low_confidence_answer(text: str, query: StructuredQuery) -> UniversalAnswer:
    narrative = (
        f'I had difficulty understanding your query "{text}". Could you please rephrase it '
        f"or provide more specific details? For example, you could specify:\n\n"
        "- Company names or ticker symbols\n"
        "- Specific financial metrics or data points\n"
        "- Time periods of interest\n"
        "- Types of SEC filings (10-K, 10-Q, 8-K, etc.)\n\n"
        "Some example queries that work well:\n"
        '- "What is Tesla\'s business description?"\n'
        '- "Compare Apple and Microsoft\'s revenue"\n'
        '- "What are the main risk factors for Amazon?"\n'
        '- "Show me Google\'s latest 10-K filing"'
    )
    return UniversalAnswer(
        narrative=narrative,
        assessment=AnswerAssessment(
            confidence=query.confidence,
            completeness=0.1,
            limitations=[
                "Query parsing failed or had low confidence",
                "Unable to identify clear intent or entities",
            ],
        ),
        follow_up=FollowUpSuggestions(
            suggested_queries=[
                "What does [company name] do?",
                "What was [company]'s revenue last year?",
                "What are [company]'s main risks?",
                "Compare [company1] and [company2] finances",
            ],
            related_topics=["Query syntax", "Available data types", "Company lookup"],
        ),
        metadata=AnswerMetadata(
            query_id=_query_id("low_confidence"),
            complexity="simple",
            confidence=query.confidence,
            pipeline_state="low_confidence_parse",
        ),
    )


def insufficient_data_answer(
    text: str,
    query: StructuredQuery,
    knowledge: Optional[KnowledgeSet] = None,
) -> UniversalAnswer:
    knowledge = knowledge or KnowledgeSet()
    names = ", ".join(c.name for c in query.entities.companies)
    if names:
        detail = (
            f"The companies mentioned ({names}) may not be in our database, "
            f"or there may have been issues accessing their SEC filings."
        )
    else:
        detail = "No companies were clearly identified in your query."
    narrative = (
        f'I was unable to find sufficient data to answer "{text}". {detail}\n\n'
        "Our database includes major public companies that file with the SEC. Please verify:\n"
        "- Company names or ticker symbols are spelled correctly\n"
        "- The companies are publicly traded in the US\n"
        "- The companies have recent SEC filings\n\n"
        "You can also try:\n"
        "- Using official company names or common ticker symbols\n"
        "- Asking about well-known public companies (Apple, Microsoft, Tesla, etc.)\n"
        "- Specifying the type of information you're looking for"
    )
    return UniversalAnswer(
        narrative=narrative,
        assessment=AnswerAssessment(
            confidence=knowledge.confidence,
            completeness=knowledge.completeness,
            limitations=[
                "Insufficient data extracted from SEC sources",
                "Company may not be in database or have accessible filings",
                "SEC API may be temporarily unavailable",
            ],
            data_freshness=DataFreshness(
                coverage_gaps=[CoverageGap(area="Company data", description="No data available", impact="high")],
            ),
        ),
        follow_up=FollowUpSuggestions(
            suggested_queries=[
                "List available companies in the database",
                "Search for companies by industry",
                "Try a different company name or ticker symbol",
            ],
            related_topics=["Supported companies", "SEC filing types", "Data availability"],
        ),
        metadata=AnswerMetadata(
            query_id=_query_id("insufficient_data"),
            complexity=query.complexity,
            confidence=knowledge.confidence,
            sources=[s.name for s in knowledge.sources],
            pipeline_state="insufficient_data",
        ),
    )


def error_answer(text: str, message: str) -> UniversalAnswer:
    """SystemError answer. Confidence is always 0.1, completeness 0.0."""
    narrative = (
        f'I encountered an error while processing your query "{text}". This could be due to:\n\n'
        "- Temporary issues with SEC data sources\n"
        "- Network connectivity problems\n"
        "- System processing errors\n\n"
        "Please try again in a few moments. If the problem persists, you can:\n"
        "- Try a simpler version of your query\n"
        "- Check if the company names are correct\n"
        "- Contact support for assistance\n\n"
        f"Error details: {message or 'Unknown error occurred'}"
    )
    return UniversalAnswer(
        narrative=narrative,
        assessment=AnswerAssessment(
            confidence=0.1,
            completeness=0.0,
            limitations=[
                "System error prevented processing",
                "No data was retrieved or analyzed",
                "Query could not be completed",
            ],
            data_freshness=DataFreshness(
                coverage_gaps=[CoverageGap(area="All data", description="System error", impact="high")],
            ),
        ),
        follow_up=FollowUpSuggestions(
            suggested_queries=["Try again with a simpler query", "Check system status", "Contact support"],
            related_topics=["System status", "Error reporting", "Alternative queries"],
        ),
        metadata=AnswerMetadata(
            query_id=_query_id("error"),
            complexity="simple",
            confidence=0.1,
            pipeline_state="system_error",
        ),
    )


def deadline_answer(text: str, deadline_seconds: float) -> UniversalAnswer:
    narrative = (
        f'I could not finish processing your query "{text}" within the {deadline_seconds:g} second '
        "time limit. SEC data sources may be responding slowly.\n\n"
        "Please try again, or narrow the query to a single company or filing type."
    )
    return UniversalAnswer(
        narrative=narrative,
        assessment=AnswerAssessment(
            confidence=0.1,
            completeness=0.0,
            limitations=["Processing time limit reached before any data was retrieved"],
            data_freshness=DataFreshness(
                coverage_gaps=[CoverageGap(area="All data", description="Time limit reached", impact="high")],
            ),
        ),
        follow_up=FollowUpSuggestions(
            suggested_queries=["Try again with a simpler query"],
            related_topics=["System status"],
        ),
        metadata=AnswerMetadata(
            query_id=_query_id("deadline"),
            complexity="simple",
            confidence=0.1,
            pipeline_state="deadline_exceeded",
        ),
    )
