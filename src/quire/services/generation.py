"""Generation orchestration: prompt templates plus output parsing.

Each task makes its language model call(s) with a template from
``quire/prompts`` and parses the output strictly. Malformed structured
output raises instead of being replaced by a default artifact.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from functools import lru_cache
from importlib import resources
from string import Template
from typing import Any, Sequence

from quire.core.errors import GenerationFailed, ScriptParseError
from quire.core.modelhub import LanguageModel

logger = logging.getLogger("quire.generation")

DECLINE_SENTENCE = "I'm sorry, this information is not available in the provided context."
UNTITLED_NOTE = "Untitled Note"
MIND_MAP_X_SPACING = 280
MIND_MAP_Y_SPACING = 90

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@lru_cache(maxsize=None)
def load_prompt(name: str) -> Template:
    text = resources.files("quire.prompts").joinpath(f"{name}.txt").read_text(encoding="utf-8")
    return Template(text)


def render_prompt(name: str, **values: Any) -> str:
    return load_prompt(name).safe_substitute(**values)


def strip_code_fences(raw: str) -> str:
    return _FENCE.sub("", raw).strip()


def _load_json_object(raw: str, what: str) -> dict[str, Any]:
    try:
        data = json.loads(strip_code_fences(raw))
    except ValueError as exc:
        logger.warning("generation.parse.failed", extra={"what": what, "error": str(exc), "raw_chars": len(raw)})
        raise ScriptParseError(f"{what} is not valid JSON ({exc})", raw) from exc
    if not isinstance(data, dict):
        raise ScriptParseError(f"{what} must be a JSON object", raw)
    return data


async def answer_question(llm: LanguageModel, *, question: str, context: str, history: str) -> str:
    prompt = render_prompt("chat_prompt", history=history or "(none)", context=context or "(none)", question=question)
    answer = (await llm.generate(render_prompt("chat_system"), prompt)).strip()
    if not answer:
        raise GenerationFailed("chat model returned an empty answer")
    return answer


async def generate_note_title(llm: LanguageModel, note: str) -> str:
    lines = (await llm.generate("", render_prompt("note_title", note=note))).strip().splitlines()
    # first line, without surrounding quotes or markdown emphasis
    title = lines[0].strip().strip("\"'*#").strip() if lines else ""
    return title[:255] or UNTITLED_NOTE


async def generate_note_content(llm: LanguageModel, note: str) -> str:
    content = (await llm.generate("", render_prompt("note_content", note=note))).strip()
    return content or note


def parse_podcast_script(raw: str, voices: Sequence[str]) -> dict[str, Any]:
    """Validate ``{title, segments:[{content, voice}]}`` with two alternating voices.

    The first segment uses ``voices[0]`` and turns alternate strictly.
    """
    if len(voices) != 2:
        raise ValueError("exactly two podcast voices must be configured")
    data = _load_json_object(raw, "podcast script")
    title = data.get("title")
    segments = data.get("segments")
    if not isinstance(title, str) or not title.strip():
        raise ScriptParseError("missing title", raw)
    if not isinstance(segments, list) or not segments:
        raise ScriptParseError("missing segments", raw)
    parsed = []
    for idx, segment in enumerate(segments):
        if not isinstance(segment, dict):
            raise ScriptParseError(f"segment {idx} is not an object", raw)
        content, voice = segment.get("content"), segment.get("voice")
        if not isinstance(content, str) or not content.strip():
            raise ScriptParseError(f"segment {idx} has no content", raw)
        if voice != voices[idx % 2]:
            raise ScriptParseError(f"segment {idx} voice {voice!r} breaks the alternation", raw)
        parsed.append({"content": content.strip(), "voice": voice})
    return {"title": title.strip(), "segments": parsed}


async def generate_podcast_script(llm: LanguageModel, context: str, voices: Sequence[str]) -> dict[str, Any]:
    system = render_prompt("podcast_system", voice_a=voices[0], voice_b=voices[1])
    raw = await llm.generate(system, context)
    return parse_podcast_script(raw, voices)


def layout_mind_map(nodes: Sequence[dict[str, str]], edges: Sequence[dict[str, str]]) -> dict[str, Any]:
    """Place nodes on columns by breadth-first depth from the first node.

    Output is the graph shape a React Flow canvas renders directly.
    """
    ids = [n["id"] for n in nodes]
    children: dict[str, list[str]] = {i: [] for i in ids}
    for edge in edges:
        children[edge["source"]].append(edge["target"])
    depth = {ids[0]: 0}
    queue = deque([ids[0]])
    while queue:
        current = queue.popleft()
        for child in children[current]:
            if child not in depth:
                depth[child] = depth[current] + 1
                queue.append(child)
    # Unreachable nodes end up in a trailing column
    last = max(depth.values()) + 1
    columns: dict[int, list[str]] = {}
    for node_id in ids:
        columns.setdefault(depth.get(node_id, last), []).append(node_id)
    positions = {}
    for col, members in columns.items():
        offset = (len(members) - 1) * MIND_MAP_Y_SPACING / 2
        for row, node_id in enumerate(members):
            positions[node_id] = {"x": col * MIND_MAP_X_SPACING, "y": row * MIND_MAP_Y_SPACING - offset}
    labels = {n["id"]: n["label"] for n in nodes}
    return {
        "nodes": [{"id": i, "data": {"label": labels[i]}, "position": positions[i]} for i in ids],
        "edges": [
            {"id": f"e-{e['source']}-{e['target']}", "source": e["source"], "target": e["target"]} for e in edges
        ],
    }


def parse_mind_map(raw: str) -> dict[str, Any]:
    data = _load_json_object(raw, "mind map")
    nodes, edges = data.get("nodes"), data.get("edges", [])
    if not isinstance(nodes, list) or not nodes:
        raise ScriptParseError("mind map has no nodes", raw)
    if not isinstance(edges, list):
        raise ScriptParseError("mind map edges must be a list", raw)
    clean_nodes = []
    for node in nodes:
        if not isinstance(node, dict) or not str(node.get("id", "")).strip() or not str(node.get("label", "")).strip():
            raise ScriptParseError("mind map node needs an id and a label", raw)
        clean_nodes.append({"id": str(node["id"]), "label": str(node["label"]).strip()})
    known = {n["id"] for n in clean_nodes}
    if len(known) != len(clean_nodes):
        raise ScriptParseError("mind map node ids must be unique", raw)
    clean_edges = []
    for edge in edges:
        if not isinstance(edge, dict) or str(edge.get("source")) not in known or str(edge.get("target")) not in known:
            raise ScriptParseError("mind map edge references an unknown node", raw)
        clean_edges.append({"source": str(edge["source"]), "target": str(edge["target"])})
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        title = clean_nodes[0]["label"]
    return {"title": title.strip()[:255], "graph": layout_mind_map(clean_nodes, clean_edges)}


async def generate_mind_map(llm: LanguageModel, instruction: str, context: str) -> dict[str, Any]:
    prompt = f"{instruction}\n\nMaterial:\n{context}" if instruction else context
    raw = await llm.generate(render_prompt("mind_map_system"), prompt)
    return parse_mind_map(raw)


__all__ = [
    "DECLINE_SENTENCE",
    "UNTITLED_NOTE",
    "load_prompt",
    "render_prompt",
    "strip_code_fences",
    "answer_question",
    "generate_note_title",
    "generate_note_content",
    "parse_podcast_script",
    "generate_podcast_script",
    "layout_mind_map",
    "parse_mind_map",
    "generate_mind_map",
]
