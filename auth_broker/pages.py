"""
HTML rendered into the popup by /auth/google/callback. The page only tells the user what
happened and closes itself; the embedding page gets the actual result by polling /status.
"""
import html

POPUP_CLOSE_DELAY_MS = 1500


def popup_close_page(message: str, success: bool) -> str:
    background = "#f0fdf4" if success else "#fef2f2"
    color = "#166534" if success else "#991b1b"
    icon = "&#10003;" if success else "&#10005;"
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Google Sign-In</title>
  <style>
    body {{
      font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
      display: flex;
      align-items: center;
      justify-content: center;
      min-height: 100vh;
      margin: 0;
      background: {background};
      color: {color};
    }}
    .container {{ text-align: center; padding: 2rem; }}
    .icon {{ font-size: 3rem; margin-bottom: 1rem; }}
  </style>
</head>
<body>
  <div class="container">
    <div class="icon">{icon}</div>
    <p>{html.escape(message)}</p>
    <p><small>This window will close automatically...</small></p>
  </div>
  <script>
    setTimeout(function () {{
      try {{ window.close(); }} catch (e) {{}}
    }}, {POPUP_CLOSE_DELAY_MS});
  </script>
</body>
</html>"""
