"""Render a converted video into Markdown, HTML, EPUB or a one-page brief.

Pure Python: the EPUB is written as a zip by hand and the HTML comes from a
small Markdown subset converter.
"""

from __future__ import annotations

import base64
import html
import re
import shutil
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from core.errors import ConversionError, ErrorKind
from core.models import Document, OutputFormat, Section

_STYLE = (
    "body{font-family:serif;line-height:1.5;font-size:0.95em;max-width:52em;margin:0 auto;padding:0 1em}"
    "h1,h2,h3{margin:0.7em 0 0.35em}"
    "p{margin:0.35em 0}"
    "ul{margin:0.25em 0 0.35em 1.1em;padding:0}"
    "li{margin:0.15em 0}"
    "img{max-width:100%;height:auto;display:block;margin:0.5em 0}"
    "blockquote{margin:0.5em 0;padding-left:1em;border-left:3px solid #ccc;color:#555;font-style:italic}"
    "hr{border:0;border-top:1px solid #ddd;margin:1em 0}"
    ".meta{color:#777;font-size:0.9em}"
)


@dataclass
class RenderedDocument:
    output_path: Path
    file_size: int
    pages: int


def format_timestamp(seconds: float) -> str:
    seconds = int(seconds)
    h, rem = divmod(seconds, 3600)
    m, s = divmod(rem, 60)
    return f"{h}:{m:02d}:{s:02d}" if h else f"{m:02d}:{s:02d}"


def safe_filename(title: str, max_length: int = 100) -> str:
    """Convert title to a safe filename."""
    safe = re.sub(r'[<>:"/\\|?*]', '_', title)
    safe = re.sub(r'\s+', '_', safe)
    safe = safe.strip('._')
    if len(safe) > max_length:
        safe = safe[:max_length].rstrip('_')
    return safe or "untitled"


def _inline(text: str) -> str:
    """Escape, then apply code, link, bold and italic markup."""
    if not text:
        return ""
    text = html.escape(text, quote=False)
    text = re.sub(r'`([^`]+)`', r'<code>\1</code>', text)

    links: list[str] = []

    def stash(m):
        links.append(f'<a href="{html.escape(m.group(2))}">{m.group(1)}</a>')
        return f"\x00{len(links) - 1}\x00"

    text = re.sub(r'\[(.*?)\]\((.*?)\)', stash, text)
    text = re.sub(r'(\*\*|__)(?=\S)(.+?)(?<=\S)\1', r'<b>\2</b>', text)
    text = re.sub(r'(?<!\*)(\*|_)(?=\S)(.+?)(?<=\S)\1(?!\*)', r'<i>\2</i>', text)
    return re.sub(r'\x00(\d+)\x00', lambda m: links[int(m.group(1))], text)


def markdown_to_html_body(md: str) -> str:
    """Convert the Markdown subset produced by ``build_markdown``."""
    out: list[str] = []
    in_list = False

    for line in md.splitlines():
        stripped = line.strip()
        is_item = stripped.startswith(("- ", "* "))
        if in_list and not is_item:
            out.append("</ul>")
            in_list = False
        if not stripped:
            continue

        heading = re.match(r"^(#{1,6})\s+(.*)$", stripped)
        image = re.match(r"^!\[(.*?)\]\((.*?)\)$", stripped)
        if heading:
            level = len(heading.group(1))
            out.append(f"<h{level}>{_inline(heading.group(2))}</h{level}>")
        elif image:
            out.append(f'<img src="{html.escape(image.group(2))}" alt="{html.escape(image.group(1))}"/>')
        elif re.match(r"^([-*_])\1{2,}$", stripped):
            out.append("<hr/>")
        elif stripped.startswith("> "):
            out.append(f"<blockquote>{_inline(stripped[2:])}</blockquote>")
        elif is_item:
            if not in_list:
                out.append("<ul>")
                in_list = True
            out.append(f"<li>{_inline(stripped[2:])}</li>")
        else:
            out.append(f"<p>{_inline(stripped)}</p>")

    if in_list:
        out.append("</ul>")
    return "\n".join(out)


def wrap_html(title: str, body: str, language: str = "en", xhtml: bool = False) -> str:
    head = "<?xml version='1.0' encoding='utf-8'?>\n<!DOCTYPE html>\n" if xhtml else "<!DOCTYPE html>\n"
    ns = " xmlns='http://www.w3.org/1999/xhtml'" if xhtml else ""
    return (
        f"{head}<html{ns} lang='{language}'>\n<head>\n  <meta charset='utf-8'/>\n"
        f"  <title>{html.escape(title)}</title>\n  <style>{_STYLE}</style>\n</head>\n"
        f"<body>\n{body}\n</body>\n</html>\n"
    )


def _section_heading(section: Section) -> str:
    stamp = format_timestamp(section.timestamp)
    if section.chapter_title:
        return f"## {section.chapter_title} ({stamp})"
    return f"## {stamp}"


def _section_lines(section: Section, image_ref: Optional[str], document: Document) -> list[str]:
    lines = [_section_heading(section), ""]
    if image_ref:
        lines += [f"![{format_timestamp(section.timestamp)}]({image_ref})", ""]

    enhanced = section.enhanced
    if enhanced is not None:
        if enhanced.one_liner:
            lines += [f"**{enhanced.one_liner}**", ""]
        lines += [f"- {p}" for p in enhanced.key_points]
        if enhanced.key_points:
            lines.append("")
        lines += [p for para in enhanced.paragraphs for p in (para, "")]
        lines += [f"- {b}" for b in enhanced.bullets]
        if enhanced.bullets:
            lines.append("")
        for quote in enhanced.notable_quotes:
            speaker = f" ({quote.speaker})" if quote.speaker else ""
            lines += [f"> {quote.text}{speaker}", ""]
        text = enhanced.translated_text if document.options.include_translation else section.raw_text
        if text:
            lines += [text, ""]
        return lines

    if section.summary:
        lines += [f"**{section.summary}**", ""]
    lines += [f"- {p}" for p in section.key_points]
    if section.key_points:
        lines.append("")
    if section.raw_text:
        lines += [section.raw_text, ""]
    return lines


def build_markdown(document: Document, image_refs: Optional[dict[float, str]] = None) -> str:
    """Build the full Markdown document.

    ``image_refs`` maps section timestamps to the image reference to embed;
    by default each captured frame's own path is used.
    """
    meta = document.metadata
    lines = [f"# {meta.title}", ""]
    byline = " · ".join(x for x in (meta.channel, format_timestamp(meta.duration) if meta.duration else "") if x)
    if byline:
        lines += [byline, ""]
    lines += ["---", ""]

    summary = document.summary
    if document.options.include_summary and summary is not None and not summary.empty:
        lines += ["## Summary", ""]
        if summary.summary:
            lines += [summary.summary, ""]
        lines += [f"- {p}" for p in summary.key_points]
        lines += ["", "---", ""]

    for section in document.sections:
        if image_refs is not None:
            ref = image_refs.get(section.timestamp)
        else:
            ref = section.frame.image_path if section.frame and section.frame.captured else None
        lines += _section_lines(section, ref, document)

    return "\n".join(lines).rstrip() + "\n"


def build_brief(document: Document) -> str:
    """One-page HTML overview: summary, key points and a chapter/section index."""
    meta = document.metadata
    parts = [f"<h1>{html.escape(meta.title)}</h1>"]
    if meta.channel:
        parts.append(f"<p class='meta'>{html.escape(meta.channel)} · {format_timestamp(meta.duration)}</p>")
    summary = document.summary
    if summary is not None and summary.summary:
        parts.append(f"<p>{html.escape(summary.summary)}</p>")
    if summary is not None and summary.key_points:
        parts.append("<ul>" + "".join(f"<li>{html.escape(p)}</li>" for p in summary.key_points) + "</ul>")

    index = []
    for section in document.sections:
        label = section.chapter_title or (section.enhanced.one_liner if section.enhanced else "") or section.summary or ""
        index.append(f"<li>{format_timestamp(section.timestamp)} {html.escape(label)}</li>")
    if index:
        parts.append("<h2>Contents</h2><ul>" + "".join(index) + "</ul>")
    return wrap_html(meta.title, "\n".join(parts), document.subtitle_language or "en")


class DocumentRenderer:
    """Writes a ``Document`` to disk in the requested format."""

    def generate(self, fmt: OutputFormat, document: Document, output_path: Path) -> RenderedDocument:
        output_path = Path(output_path)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            if fmt == OutputFormat.MARKDOWN:
                refs = self._copy_images(document, output_path)
                output_path.write_text(build_markdown(document, image_refs=refs), encoding="utf-8")
                pages = self._page_count(document)
            elif fmt == OutputFormat.HTML:
                body = markdown_to_html_body(build_markdown(document, image_refs=self._inline_images(document)))
                output_path.write_text(wrap_html(document.metadata.title, body, document.subtitle_language or "en"), encoding="utf-8")
                pages = self._page_count(document)
            elif fmt == OutputFormat.BRIEF:
                output_path.write_text(build_brief(document), encoding="utf-8")
                pages = 1
            elif fmt == OutputFormat.DOCUMENT:
                self._write_epub(document, output_path)
                pages = self._page_count(document)
            else:
                raise ConversionError(ErrorKind.INVALID_INPUT, f"Unsupported format: {fmt}")
        except OSError as e:
            raise ConversionError(ErrorKind.RENDER_FAILED, f"Could not write {fmt.value} output: {e}")
        return RenderedDocument(output_path=output_path, file_size=output_path.stat().st_size, pages=pages)

    def _captured(self, document: Document) -> list[tuple[int, Section, Path]]:
        found = []
        for i, section in enumerate(document.sections):
            frame = section.frame
            if frame and frame.captured and Path(frame.image_path).exists():
                found.append((i, section, Path(frame.image_path)))
        return found

    def _copy_images(self, document: Document, output_path: Path) -> dict[float, str]:
        """Copy frames next to a Markdown file and return relative refs."""
        captured = self._captured(document)
        if not captured:
            return {}
        images_dir = output_path.parent / f"{output_path.stem}_images"
        images_dir.mkdir(parents=True, exist_ok=True)
        refs = {}
        for i, section, path in captured:
            name = f"frame_{i:04d}{path.suffix}"
            shutil.copyfile(path, images_dir / name)
            refs[section.timestamp] = f"{images_dir.name}/{name}"
        return refs

    def _inline_images(self, document: Document) -> dict[float, str]:
        """Data URIs so a single HTML file is self-contained."""
        refs = {}
        for _, section, path in self._captured(document):
            encoded = base64.b64encode(path.read_bytes()).decode("ascii")
            refs[section.timestamp] = f"data:image/jpeg;base64,{encoded}"
        return refs

    def _page_count(self, document: Document) -> int:
        has_summary = document.summary is not None and not document.summary.empty
        return 1 + int(has_summary and document.options.include_summary) + len(document.sections)

    def _write_epub(self, document: Document, epub_path: Path) -> None:
        title = document.metadata.title
        author = document.metadata.channel
        language = document.subtitle_language or "en"
        book_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        images = {
            section.timestamp: (f"images/frame_{i:04d}.jpg", path)
            for i, section, path in self._captured(document)
        }

        md = build_markdown(document, image_refs={ts: name for ts, (name, _) in images.items()})
        xhtml = wrap_html(title, markdown_to_html_body(md), language, xhtml=True)

        image_items = "\n".join(
            f"    <item id='img{i}' href='{name}' media-type='image/jpeg'/>"
            for i, (name, _) in enumerate(images.values())
        )
        content_opf = f"""<?xml version='1.0' encoding='utf-8'?>
<package xmlns='http://www.idpf.org/2007/opf' unique-identifier='BookId' version='2.0'>
  <metadata xmlns:dc='http://purl.org/dc/elements/1.1/' xmlns:opf='http://www.idpf.org/2007/opf'>
    <dc:title>{html.escape(title)}</dc:title>
    <dc:language>{language}</dc:language>
    <dc:identifier id='BookId'>{book_id}</dc:identifier>
    <dc:creator>{html.escape(author)}</dc:creator>
    <dc:date>{now}</dc:date>
  </metadata>
  <manifest>
    <item id='ncx' href='toc.ncx' media-type='application/x-dtbncx+xml'/>
    <item id='content' href='content.xhtml' media-type='application/xhtml+xml'/>
{image_items}
  </manifest>
  <spine toc='ncx'>
    <itemref idref='content'/>
  </spine>
</package>
"""
        toc_ncx = f"""<?xml version='1.0' encoding='utf-8'?>
<ncx xmlns='http://www.daisy.org/z3986/2005/ncx/' version='2005-1'>
  <head>
    <meta name='dtb:uid' content='{book_id}'/>
    <meta name='dtb:depth' content='1'/>
  </head>
  <docTitle><text>{html.escape(title)}</text></docTitle>
  <navMap>
    <navPoint id='navPoint-1' playOrder='1'>
      <navLabel><text>{html.escape(title)}</text></navLabel>
      <content src='content.xhtml'/>
    </navPoint>
  </navMap>
</ncx>
"""
        container_xml = (
            "<?xml version='1.0' encoding='utf-8'?>\n"
            "<container version='1.0' xmlns='urn:oasis:names:tc:opendocument:xmlns:container'>\n"
            "  <rootfiles>\n"
            "    <rootfile full-path='OEBPS/content.opf' media-type='application/oebps-package+xml'/>\n"
            "  </rootfiles>\n"
            "</container>\n"
        )

        # mimetype must be the first entry and stored uncompressed
        with zipfile.ZipFile(epub_path, "w", compression=zipfile.ZIP_DEFLATED) as z:
            z.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
            z.writestr("META-INF/container.xml", container_xml)
            z.writestr("OEBPS/content.opf", content_opf)
            z.writestr("OEBPS/toc.ncx", toc_ncx)
            z.writestr("OEBPS/content.xhtml", xhtml)
            for name, path in images.values():
                z.write(path, f"OEBPS/{name}")
