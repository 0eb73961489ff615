"""
Forum Edge — HTML Shell Route
===============================

What:  Serves the HTML document the forum's client bundle boots from.
Why:   It is the one place this service renders inline script, so it is the
       consumer of the per-request CSP nonce drawn by the edge gate.
"""

import html
import json

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from forum_edge.middleware.edge_gate import get_request_nonce

router = APIRouter(tags=["Pages"])

SHELL_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Forum</title>
</head>
<body>
<div id="root"></div>
<script{nonce_attr}>window.__FORUM_BOOT__ = {boot};</script>
<script{nonce_attr} src="/static/app.js" defer></script>
</body>
</html>
"""


def render_shell(nonce: str | None, authenticated: bool) -> str:
    nonce_attr = f' nonce="{html.escape(nonce)}"' if nonce else ""
    # "</" cannot appear in the JSON, so it cannot close the script element
    boot = json.dumps({"authenticated": authenticated}).replace("</", "<\\/")
    return SHELL_TEMPLATE.format(nonce_attr=nonce_attr, boot=boot)


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def shell(request: Request) -> HTMLResponse:
    authenticated = getattr(request.state, "user", None) is not None
    return HTMLResponse(render_shell(get_request_nonce(request), authenticated))
