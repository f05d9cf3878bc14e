"""Export chat tabs and conversations to Markdown, JSON and standalone HTML."""

import html
import json

import markdown

from .core import ChatTab, NormalizedRecord

HTML_STYLE = """
  body {
    max-width: 800px;
    margin: 40px auto;
    padding: 0 20px;
    font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, "Helvetica Neue", Arial, sans-serif;
    line-height: 1.6;
    color: #333;
  }
  pre {
    background: #f5f5f5;
    padding: 1em;
    overflow-x: auto;
    border-radius: 4px;
    border: 1px solid #ddd;
  }
  code {
    font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, "Liberation Mono", "Courier New", monospace;
    font-size: 0.9em;
  }
  hr { border: none; border-top: 1px solid #ddd; margin: 2em 0; }
  h1, h2, h3 { margin-top: 2em; margin-bottom: 1em; }
  @media (prefers-color-scheme: dark) {
    body { background: #1a1a1a; color: #ddd; }
    pre { background: #2d2d2d; border-color: #404040; }
  }
"""


def _speaker(bubble_type: str, model_type: str | None) -> str:
    if bubble_type == "ai":
        return f"AI ({model_type})" if model_type else "AI"
    return "User"


# ── Chat tabs ────────────────────────────────────────────────────


def tab_to_markdown(tab: ChatTab) -> str:
    """Export an "ask" chat tab as Markdown, selections as fenced code."""
    lines = [f"# {tab.title or f'Chat {tab.id}'}", ""]
    if tab.timestamp:
        lines.extend([f"_Created: {tab.timestamp.strftime('%Y-%m-%d %H:%M')}_", ""])
    lines.extend(["---", ""])

    for bubble in tab.bubbles:
        lines.extend([f"### {_speaker(bubble.type, bubble.model_type)}", ""])
        if bubble.selections:
            lines.extend(["**Selected Code:**", ""])
            for selection in bubble.selections:
                lines.extend(["```", selection, "```", ""])
        if bubble.text:
            lines.extend([bubble.text, ""])
        lines.extend(["---", ""])

    return "\n".join(lines)


def tab_to_json(tab: ChatTab) -> str:
    data = {
        "id": tab.id,
        "title": tab.title,
        "timestamp": tab.timestamp.isoformat() if tab.timestamp else None,
        "bubbles": [
            {
                "type": b.type,
                "text": b.text,
                "modelType": b.model_type,
                "selections": b.selections,
            }
            for b in tab.bubbles
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def tab_to_html(tab: ChatTab) -> str:
    sections = []
    for bubble in tab.bubbles:
        parts = [f"<h3>{html.escape(_speaker(bubble.type, bubble.model_type))}</h3>"]
        if bubble.selections:
            parts.append("<p><strong>Selected Code:</strong></p>")
            parts.extend(f"<pre><code>{html.escape(s)}</code></pre>" for s in bubble.selections)
        if bubble.text:
            parts.append(text_to_html(bubble.text))
        sections.append("\n".join(parts))
    subtitle = f"<p><em>Created: {tab.timestamp.strftime('%Y-%m-%d %H:%M')}</em></p>" if tab.timestamp else ""
    return _document(tab.title or f"Chat {tab.id}", subtitle, sections)


# ── Conversations (bubble records) ───────────────────────────────


def records_to_markdown(title: str, records: list[NormalizedRecord]) -> str:
    """Export a conversation's records as Markdown, rich payloads summarised."""
    lines = [f"# {title}", "", f"**Messages:** {len(records)}", "", "---", ""]

    for record in records:
        lines.extend([f"## {record.role.capitalize()}", ""])
        if record.text:
            lines.extend([record.text, ""])
        for result in record.tool_results:
            status = "ok" if result.success else "failed"
            lines.append(f"- Tool `{result.tool}` ({status})")
        for diff in record.git_diffs:
            lines.append(f"- Diff `{diff.filename}` ({diff.change_type})")
        for chunk in record.attached_files:
            lines.append(f"- Attached `{chunk.filename}`")
        if record.tool_results or record.git_diffs or record.attached_files:
            lines.append("")
        lines.extend(["---", ""])

    return "\n".join(lines)


def records_to_json(conversation_id: str, title: str, records: list[NormalizedRecord]) -> str:
    data = {
        "conversation": {"id": conversation_id, "title": title, "message_count": len(records)},
        "messages": [
            {
                "id": r.record_id,
                "row": r.row_ordinal,
                "role": r.role,
                "content": r.text,
                "is_agentic": r.flags.is_agentic,
                "capabilities": r.capabilities,
                "tools": [t.tool for t in r.tool_results],
                "files": [f.filename for f in r.attached_files],
            }
            for r in records
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def records_to_html(title: str, records: list[NormalizedRecord]) -> str:
    sections = []
    for record in records:
        parts = [f"<h3>{html.escape(record.role.capitalize())}</h3>"]
        if record.text:
            parts.append(text_to_html(record.text))
        sections.append("\n".join(parts))
    return _document(title, f"<p><strong>Messages:</strong> {len(records)}</p>", sections)


# ── HTML helpers ─────────────────────────────────────────────────


def text_to_html(text: str) -> str:
    """Render message Markdown to HTML; raw HTML in the text is escaped, not passed through."""
    md = markdown.Markdown(extensions=["fenced_code", "tables"])
    md.preprocessors.deregister("html_block")
    md.inlinePatterns.deregister("html")
    return md.convert(text)


def _document(title: str, subtitle: str, sections: list[str]) -> str:
    body = "\n<hr>\n".join(sections)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n<meta charset=\"UTF-8\">\n"
        f"<title>{html.escape(title)}</title>\n"
        f"<style>{HTML_STYLE}</style>\n"
        "</head>\n<body>\n"
        f"<h1>{html.escape(title)}</h1>\n{subtitle}\n<hr>\n{body}\n"
        "</body>\n</html>\n"
    )
