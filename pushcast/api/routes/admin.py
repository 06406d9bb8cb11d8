"""Static admin page for broadcasting a notification by hand."""

from __future__ import annotations

import html

from fastapi import APIRouter
from fastapi.responses import HTMLResponse

from pushcast.config import get_settings

router = APIRouter()

_PAGE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Notification Panel</title>
  <style>
    body {{ background: #f6f6ef; font-family: sans-serif; margin: 0; }}
    header {{ background: #ff6600; color: #fff; padding: 8px; }}
    main {{ background: #fff; border: 1px solid #ddd; margin: 16px auto; max-width: 640px; padding: 16px; }}
    label {{ display: block; font-size: 14px; margin: 12px 0 4px; }}
    input, textarea {{ box-sizing: border-box; font-size: 14px; padding: 4px; width: 100%; }}
    #result.ok {{ color: #1a7f37; }}
    #result.error {{ color: #cf222e; }}
  </style>
</head>
<body>
  <header>Notification Panel</header>
  <main>
    <form id="broadcast">
      <label for="title">Title</label>
      <input id="title" name="title" value="{title}" required>
      <label for="message">Message</label>
      <textarea id="message" name="message" rows="4" placeholder="Type your message here..." required></textarea>
      <p><button type="submit">Send notification</button></p>
    </form>
    <p id="result"></p>
  </main>
  <script>
    const form = document.getElementById("broadcast");
    const result = document.getElementById("result");
    form.addEventListener("submit", async (event) => {{
      event.preventDefault();
      const button = form.querySelector("button");
      button.disabled = true;
      result.textContent = "";
      try {{
        const response = await fetch("send-notification", {{
          method: "POST",
          headers: {{ "Content-Type": "application/json" }},
          body: JSON.stringify({{ title: form.title.value, message: form.message.value }}),
        }});
        const data = await response.json();
        result.className = response.ok ? "ok" : "error";
        result.textContent = response.ok
          ? `Sent to ${{data.summary.succeeded}} of ${{data.summary.requested}} devices.`
          : (data.detail || "Failed to send notification.");
      }} catch (error) {{
        result.className = "error";
        result.textContent = "Could not reach the server.";
      }} finally {{
        button.disabled = false;
      }}
    }});
  </script>
</body>
</html>
"""


@router.get("/", response_class=HTMLResponse, include_in_schema=False)
async def admin_panel() -> HTMLResponse:
  return HTMLResponse(_PAGE.format(title=html.escape(get_settings().default_title, quote=True)))
