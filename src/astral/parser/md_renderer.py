"""Markdown to HTML rendering with wikilink and reference support.

Document bodies are stored as HTML rich text. ``[[target]]`` and
``[[target|label]]`` are parsed by a dedicated inline rule. A plain render
emits them as ``<a class="wikilink" data-path="target">label</a>``.

Given a resolver, ``ReferenceRenderer`` turns wikilinks and links to archive
documents into object mention spans while rendering, and optionally promotes
``#hashtags`` to hashtag pills. Wikilinks and hashtags inside code spans and
code blocks stay literal.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from urllib.parse import unquote

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml
from markdown_it.renderer import RendererHTML
from markdown_it.rules_inline import StateInline

from .links import HASHTAG_PATTERN, is_document_path

# Lookup keys -> object id, or None when nothing matches
Resolver = Callable[[Sequence[str]], str | None]


@dataclass
class MarkdownResult:
    """Rendered HTML plus the references met while rendering.

    ``links`` holds the distinct resolved object ids and ``unresolved`` every
    target that matched nothing, both in body order. A plain render (no
    resolver) leaves both empty.
    """

    html: str
    links: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)


def normalize_link(target: str) -> str:
    """Normalize a wikilink target: trim, drop the document extension, use forward slashes."""
    target = target.strip().replace("\\", "/")
    lowered = target.lower()
    for ext in (".markdown", ".md"):
        if lowered.endswith(ext):
            target = target[: -len(ext)]
            break
    return target.strip("/")


def reference_keys(target: str) -> list[str]:
    """Lookup keys for a reference target, most specific first."""
    normalized = normalize_link(target)
    return [target, normalized, normalized.rsplit("/", 1)[-1]]


def _split_wikilink(inner: str) -> tuple[str, str]:
    if "|" in inner:
        target, label = inner.split("|", 1)
        return target.strip(), label.strip() or target.strip()
    return inner.strip(), inner.strip()


def _wikilink_rule(state: StateInline, silent: bool) -> bool:
    pos = state.pos
    src = state.src

    if not src.startswith("[[", pos):
        return False

    end = src.find("]]", pos + 2)
    if end == -1:
        return False

    inner = src[pos + 2 : end]
    if not inner.strip() or "\n" in inner or "[" in inner:
        return False

    if not silent:
        target, label = _split_wikilink(inner)
        token = state.push("wikilink", "", 0)
        token.content = label
        token.meta = {"target": target, "label": label}

    state.pos = end + 2
    return True


class ReferenceRenderer(RendererHTML):
    """HTML renderer that resolves references while rendering.

    Without a resolver it renders wikilinks as ``wikilink`` anchors and
    leaves everything else to the stock renderer. With one, wikilinks and
    links to archive documents become ``mention`` spans carrying the object
    id, or ``mention-broken`` spans when the target resolves to nothing.
    Resolved ids and unresolved targets are collected in ``env``.
    """

    def __init__(
        self,
        parser=None,
        resolve: Resolver | None = None,
        hashtags: Mapping[str, str] | None = None,
    ) -> None:
        super().__init__(parser)
        self._resolve = resolve
        self._hashtags = hashtags or {}

    def wikilink(self, tokens, idx, options, env) -> str:
        meta = tokens[idx].meta
        label = escapeHtml(meta["label"])
        if self._resolve is None:
            return f'<a class="wikilink" data-path="{escapeHtml(meta["target"])}">{label}</a>'
        return self._open_mention(meta["target"], reference_keys(meta["target"]), env) + label + "</span>"

    def link_open(self, tokens, idx, options, env) -> str:
        stack = env.setdefault("link_stack", [])
        href = unquote(tokens[idx].attrGet("href") or "")
        if self._resolve is None or not is_document_path(href):
            stack.append(False)
            return self.renderToken(tokens, idx, options, env)

        close = idx + 1
        while tokens[close].type != "link_close":
            close += 1
        display = self.renderInlineAsText(tokens[idx + 1 : close], options, env).strip()
        stack.append(True)
        return self._open_mention(href, [*reference_keys(href), display], env)

    def link_close(self, tokens, idx, options, env) -> str:
        if env["link_stack"].pop():
            return "</span>"
        return self.renderToken(tokens, idx, options, env)

    def text(self, tokens, idx, options, env) -> str:
        content = tokens[idx].content
        if not self._hashtags or env.get("link_stack"):
            return escapeHtml(content)

        parts: list[str] = []
        last = 0
        for match in HASHTAG_PATTERN.finditer(content):
            tag_id = self._hashtags.get(match.group(1).lower())
            if tag_id is None:
                continue
            parts.append(escapeHtml(content[last : match.start()]))
            parts.append(
                f'<span class="hashtag-pill" data-hashtag-id="{escapeHtml(tag_id)}">'
                f"#{escapeHtml(match.group(1))}</span>"
            )
            last = match.end()
        parts.append(escapeHtml(content[last:]))
        return "".join(parts)

    def _open_mention(self, target: str, keys: list[str], env) -> str:
        object_id = self._resolve(keys)
        if object_id is not None:
            links = env.setdefault("links", [])
            if object_id not in links:
                links.append(object_id)
            return f'<span class="mention" data-mention-id="{escapeHtml(object_id)}">'

        env.setdefault("unresolved", []).append(target)
        target_attr = escapeHtml(target)
        return (
            f'<span class="mention mention-broken" data-broken-ref="{target_attr}" '
            f'title="Reference not found: {target_attr}">'
        )


def _build_parser(renderer_cls: type[RendererHTML] = ReferenceRenderer) -> MarkdownIt:
    md = MarkdownIt(renderer_cls=renderer_cls)
    md.enable(["table", "strikethrough"])
    md.inline.ruler.before("link", "wikilink", _wikilink_rule)
    return md


_parser: MarkdownIt | None = None


def _get_parser() -> MarkdownIt:
    global _parser
    if _parser is None:
        _parser = _build_parser()
    return _parser


def render_markdown(
    content: str,
    resolve: Resolver | None = None,
    hashtags: Mapping[str, str] | None = None,
) -> MarkdownResult:
    """Render Markdown to HTML.

    Args:
        content: Markdown source (without frontmatter).
        resolve: Maps reference lookup keys to an object id. When given,
            references render as mention spans.
        hashtags: Lowercase tag name -> tag object id; matching hashtags
            outside links render as hashtag pills.

    Returns:
        MarkdownResult with the HTML and the references it resolved or not.
    """
    if not content.strip():
        return MarkdownResult(html="")

    if resolve is None and not hashtags:
        md = _get_parser()
    else:

        class ConfiguredRenderer(ReferenceRenderer):
            def __init__(self, parser=None):
                super().__init__(parser, resolve=resolve, hashtags=hashtags)

        md = _build_parser(ConfiguredRenderer)

    env: dict = {}
    html = md.render(content, env)
    return MarkdownResult(
        html=html,
        links=list(env.get("links", [])),
        unresolved=list(env.get("unresolved", [])),
    )
