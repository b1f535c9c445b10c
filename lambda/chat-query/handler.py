"""
Lambda handler for natural-language analytics questions.

This handler:
1. Answers CORS preflight requests and rejects methods other than POST
2. Validates the request body (a single "message" field)
3. Asks the language model whether the question needs clarification
4. Asks the language model to turn the question into a MongoDB query
5. Runs the query against the events collection (connection reused per container)
6. Asks the language model to summarize the results for a manager
7. Returns the data, the query explanation and the insights as JSON
"""

import json
import logging
import os
from typing import Any, Dict, List

from pydantic import ValidationError

from config import load_settings
from errors import (
    InsightsParseError,
    MalformedRequestError,
    PlanParseError,
)
from llm_client import LanguageModelClient, extract_json_from_response, get_llm_client
from models import (
    ChatQueryRequest,
    ClarificationDecision,
    ClarificationResponse,
    InsightsReport,
    ManagerSummary,
    QueryPlan,
)
from prompts import (
    CLARIFICATION_SYSTEM_PROMPT,
    INSIGHTS_SYSTEM_PROMPT,
    QUERY_PLAN_SYSTEM_PROMPT,
    build_insights_prompt,
)
from query_guard import check_filter, check_pipeline
from store import aggregate_documents, find_documents, get_store, validate_mongodb_uri
from utils import (
    build_error_response,
    build_preflight_response,
    build_response,
    get_http_method,
    get_raw_body,
)

# Configure logging
logger = logging.getLogger()
logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())


# ============================================================================
# Request parsing
# ============================================================================


def parse_request(event: Dict[str, Any]) -> ChatQueryRequest:
    """
    Decode the request body and extract the user's message.

    Raises:
        MalformedRequestError: If the body is not JSON or the message is missing/blank
    """
    try:
        body = json.loads(get_raw_body(event) or "{}")
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
        raise MalformedRequestError("Invalid JSON in request body", details=str(e))

    if not isinstance(body, dict):
        raise MalformedRequestError("Message is required")

    try:
        return ChatQueryRequest(**body)
    except ValidationError:
        raise MalformedRequestError("Message is required")


# ============================================================================
# Pipeline stages
# ============================================================================


def _fallback_no_clarification(reason: str) -> ClarificationDecision:
    """
    Lenient branch: an unreadable clarification reply means "go ahead".

    The question is answered as asked instead of failing the request.
    """
    logger.warning(f"[chat-query] Failed to parse clarification, continuing without it: {reason}")
    return ClarificationDecision(needs_clarification=False)


def decide_clarification(llm: LanguageModelClient, message: str) -> ClarificationDecision:
    """Ask the model whether the question can be answered as-is."""
    response_text = llm.complete(CLARIFICATION_SYSTEM_PROMPT, message)

    try:
        decision_json = extract_json_from_response(response_text)
        decision = ClarificationDecision.model_validate(decision_json)
    except (ValueError, ValidationError) as e:
        return _fallback_no_clarification(str(e))

    logger.info(f"[chat-query] Clarification needed: {decision.needs_clarification}")
    return decision


def generate_query_plan(llm: LanguageModelClient, message: str) -> QueryPlan:
    """
    Ask the model to translate the question into a store query.

    Raises:
        PlanParseError: If the reply is not a usable query plan
    """
    response_text = llm.complete(QUERY_PLAN_SYSTEM_PROMPT, message)

    try:
        plan_json = extract_json_from_response(response_text)
        plan = QueryPlan.model_validate(plan_json)
    except (ValueError, ValidationError) as e:
        logger.error(f"[chat-query] Failed to parse query plan: {e}")
        logger.error(f"[chat-query] Response text: {response_text[:500]}")
        raise PlanParseError(f"Could not parse query plan from model response: {e}") from e

    logger.info(
        f"[chat-query] Query plan generated: query={plan.query}, "
        f"pipeline_stages={len(plan.pipeline) if plan.pipeline else 0}"
    )
    return plan


def execute_query(plan: QueryPlan) -> List[Dict[str, Any]]:
    """
    Run the plan against the events collection.

    Raises:
        UnsafeQueryError: If the plan uses a forbidden operator
        StoreConnectionError: If the store cannot be reached
        StoreQueryError: If the store fails while querying
    """
    settings = load_settings()

    if plan.pipeline:
        pipeline = check_pipeline(plan.pipeline)
        db = get_store()
        return aggregate_documents(
            db,
            settings.mongodb_collection,
            pipeline,
            limit=settings.max_results
        )

    query = check_filter(plan.query)
    db = get_store()
    return find_documents(
        db,
        settings.mongodb_collection,
        query,
        store_access=settings.store_access,
        limit=settings.max_results
    )


def summarize_results(llm: LanguageModelClient, message: str, data: List[Dict[str, Any]]) -> InsightsReport:
    """
    Ask the model for key metrics, recommendations and trends.

    Raises:
        InsightsParseError: If the reply is not JSON
    """
    response_text = llm.complete(INSIGHTS_SYSTEM_PROMPT, build_insights_prompt(message, data))

    try:
        insights_json = extract_json_from_response(response_text)
        insights = InsightsReport.model_validate(insights_json)
    except (ValueError, ValidationError) as e:
        logger.error(f"[chat-query] Failed to parse insights: {e}")
        raise InsightsParseError(f"Could not parse insights from model response: {e}") from e

    return insights


def build_result_body(
    response_shape: str,
    data: List[Dict[str, Any]],
    plan: QueryPlan,
    insights: InsightsReport
) -> Dict[str, Any]:
    """Assemble the success body for the configured response shape."""
    body = {
        "explanation": plan.explanation,
        "insights": insights.model_dump(by_alias=True),
        "managerSummary": ManagerSummary.from_insights(insights).model_dump(by_alias=True),
    }

    if response_shape == "insightsOnly":
        body["count"] = len(data)
        return body

    return {"data": data, **body}


# ============================================================================
# Event processing
# ============================================================================


def process_event(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Process the Lambda event and answer the user's question.

    Args:
        event: API Gateway proxy event

    Returns:
        API Gateway response object
    """
    method = get_http_method(event)

    if method == "OPTIONS":
        return build_preflight_response()

    if method != "POST":
        logger.info(f"[chat-query] Rejected method: {method or '<none>'}")
        return build_error_response(405, "Method Not Allowed")

    try:
        request = parse_request(event)
    except MalformedRequestError as e:
        logger.error(f"[chat-query] Invalid request: {e}")
        return build_error_response(e.status_code, str(e), e.details)

    settings = load_settings()
    validate_mongodb_uri(settings.mongodb_uri)
    llm = get_llm_client()

    logger.info(f"[chat-query] Validated request: message_length={len(request.message)}")

    decision = decide_clarification(llm, request.message)
    if decision.needs_clarification:
        response = ClarificationResponse(
            questions=decision.questions,
            suggestions=decision.suggestions
        )
        logger.info(f"[chat-query] Returning {len(response.questions)} clarifying questions")
        return build_response(200, response.model_dump(by_alias=True))

    plan = generate_query_plan(llm, request.message)
    data = execute_query(plan)
    insights = summarize_results(llm, request.message, data)

    logger.info(f"[chat-query] Returning {len(data)} documents with insights")
    return build_response(200, build_result_body(settings.response_shape, data, plan, insights))


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler entry point.

    Any failure not handled closer to its source ends up here and is
    returned as a 500 carrying the failure's message.

    Args:
        event: Lambda event object
        context: Lambda context object

    Returns:
        API Gateway response object
    """
    request_id = getattr(context, "aws_request_id", None)

    try:
        logger.info(
            f"[chat-query] Processing request: method={get_http_method(event) or '<none>'}, "
            f"request_id={request_id}"
        )
        return process_event(event)

    except Exception as e:
        logger.error(
            f"[chat-query] {type(e).__name__} (request_id={request_id}): {str(e)}",
            exc_info=True
        )
        return build_error_response(500, "Internal Server Error", str(e))
