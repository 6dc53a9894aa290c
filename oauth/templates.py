"""HTML templates for pages shown to the end user's browser.

Only the IdP callback renders HTML; every other OAuth endpoint talks JSON
to the MCP client.

Colors:
- Background: #FAF9F7 (warm cream)
- Primary: #D97756 (terracotta)
- Text: #1A1915 (dark charcoal)
- Secondary text: #6B6860
- Border: #E5E4E0
"""

ERROR_PAGE = """
<!DOCTYPE html>
<html>
<head>
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif;
               background: #FAF9F7;
               min-height: 100vh; display: flex; align-items: center; justify-content: center; margin: 0; }}
        .container {{ background: white; padding: 40px; border-radius: 16px; box-shadow: 0 4px 24px rgba(0,0,0,0.08);
                     width: 100%; max-width: 400px; border: 1px solid #E5E4E0; text-align: center; }}
        h1 {{ margin: 0 0 8px; color: #1A1915; font-size: 24px; font-weight: 600; }}
        p {{ color: #6B6860; margin: 0 0 8px; }}
        .hint {{ font-size: 14px; }}
        .bar {{ height: 4px; background: #D97756; border-radius: 2px; margin: 0 0 24px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="bar"></div>
        <h1>{title}</h1>
        <p>{message}</p>
        <p class="hint">Close this window and start the connection again from your MCP client.</p>
    </div>
</body>
</html>
"""

TITLES = {
    400: "Sign-in failed",
    403: "Access denied",
    500: "Authentication failed",
}
