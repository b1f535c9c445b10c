#!/usr/bin/env python3

"""
Send a question to a deployed chat-query endpoint and print the reply.

Usage:
    ./scripts/ask-question.py "How many signups did Acme have last week?" \
        --url https://example.execute-api.us-west-2.amazonaws.com/dev/chat-query

The endpoint URL can also be set with CHAT_QUERY_URL.
"""

import argparse
import json
import os
import sys

import requests


def ask(url: str, message: str, timeout: float) -> dict:
    response = requests.post(
        url,
        json={"message": message},
        headers={"Content-Type": "application/json"},
        timeout=timeout
    )

    try:
        body = response.json()
    except ValueError:
        body = {"error": "Non-JSON response", "details": response.text[:500]}

    return {"statusCode": response.status_code, "body": body}


def print_reply(reply: dict) -> None:
    body = reply["body"]

    if reply["statusCode"] != 200:
        print(f"Error {reply['statusCode']}: {body.get('error')}")
        if body.get("details"):
            print(f"  {body['details']}")
        return

    if body.get("needsClarification"):
        print("The assistant needs more information:")
        for question in body.get("questions", []):
            print(f"  - {question}")
        for suggestion in body.get("suggestions", []):
            print(f"  e.g. {suggestion}")
        return

    print(f"Query: {body.get('explanation', '')}")
    if "data" in body:
        print(f"Matched documents: {len(body['data'])}")
    elif "count" in body:
        print(f"Matched documents: {body['count']}")

    summary = body.get("managerSummary", {})
    for title, key in (("Key metrics", "keyMetrics"), ("Recommendations", "recommendations"), ("Trends", "trends")):
        items = summary.get(key, [])
        if items:
            print(f"\n{title}:")
            for item in items:
                print(f"  - {item}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Ask the chat-query endpoint a question")
    parser.add_argument("message", help="Natural-language analytics question")
    parser.add_argument("--url", default=os.environ.get("CHAT_QUERY_URL"), help="Endpoint URL")
    parser.add_argument("--timeout", type=float, default=60.0, help="Request timeout in seconds")
    parser.add_argument("--raw", action="store_true", help="Print the raw JSON reply")
    args = parser.parse_args()

    if not args.url:
        parser.error("--url or CHAT_QUERY_URL is required")

    try:
        reply = ask(args.url, args.message, args.timeout)
    except requests.RequestException as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1

    if args.raw:
        print(json.dumps(reply["body"], indent=2))
    else:
        print_reply(reply)

    return 0 if reply["statusCode"] == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
