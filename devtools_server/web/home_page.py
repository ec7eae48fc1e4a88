"""Landing page that embeds the remote DevTools frontend."""
from __future__ import annotations

_HOME_PAGE_TEMPLATE = """\
<!DOCTYPE html>
<html><head>
<meta charset="utf-8">
<title>DevTools</title>
<style>
  html, body {{ margin: 0; height: 100%; overflow: hidden; font-family: sans-serif; }}
  #bar {{ height: 32px; display: flex; align-items: center; gap: 8px;
          padding: 0 8px; background: #f1f3f4; border-bottom: 1px solid #dadce0; }}
  iframe {{ border: 0; width: 100%; height: calc(100% - 33px); }}
</style>
</head><body>
<div id="bar">
  <button onclick="window.location.reload()">Reload</button>
  <span>Reload to attach to the newest open tab.</span>
</div>
<iframe src="{debugger_url}"></iframe>
</body></html>
"""


def render_home_page(debugger_url: str) -> str:
    # The URL is embedded verbatim so the frontend receives its query intact.
    return _HOME_PAGE_TEMPLATE.format(debugger_url=debugger_url.replace('"', "%22"))
