"""Example function: echo the request body and its content type."""

import json


async def handle(event, context):
    result = {
        "body": json.dumps(event.body, separators=(",", ":")),
        "content-type": event.headers["content-type"],
    }

    return context.set_status(200).succeed(result)
