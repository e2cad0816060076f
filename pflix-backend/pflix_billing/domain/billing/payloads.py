"""Reference extraction from provider webhook bodies.

Known payload shapes are read through explicit field lookups. The generic
walker is a bounded fallback for cobrança events whose shape the bank changes
between API versions; it never recurses and stops after a fixed budget.
"""
from __future__ import annotations

import re
from collections import deque
from dataclasses import dataclass
from typing import Any

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

PIX_LIST_KEYS = ("pix", "pixRecebidos")
COBRANCA_CONTAINER_KEYS = ("cobranca", "data", "resource", "boleto")

MAX_WALK_STEPS = 500
MAX_WALK_DEPTH = 8


@dataclass(frozen=True)
class PixCallbackItem:
    txid: str
    valor: object | None
    horario: str | None
    end_to_end_id: str | None


def normalize_uuid(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned or not UUID_PATTERN.match(cleaned):
        return None
    return cleaned


def _pix_raw_items(payload: Any) -> list:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in PIX_LIST_KEYS:
            items = payload.get(key)
            if isinstance(items, list):
                return items
    return []


def extract_pix_items(payload: Any) -> list[PixCallbackItem]:
    """Reads the Inter Pix callback list; one delivery may carry several txids."""
    items: list[PixCallbackItem] = []
    seen: set[str] = set()
    for raw in _pix_raw_items(payload):
        if not isinstance(raw, dict):
            continue
        txid = str(raw.get("txid") or raw.get("txId") or "").strip()
        if not txid or txid in seen:
            continue
        seen.add(txid)
        horario = raw.get("horario")
        end_to_end = raw.get("endToEndId")
        items.append(
            PixCallbackItem(
                txid=txid,
                valor=raw.get("valor"),
                horario=str(horario) if horario is not None else None,
                end_to_end_id=str(end_to_end) if end_to_end is not None else None,
            )
        )
    return items


def _explicit_codigo_candidates(node: Any) -> list[object]:
    if not isinstance(node, dict):
        return []
    candidates = [node.get("codigoSolicitacao")]
    for key in COBRANCA_CONTAINER_KEYS:
        container = node.get(key)
        if isinstance(container, dict):
            candidates.append(container.get("codigoSolicitacao"))
    return candidates


def _walk_uuids(payload: Any, *, max_steps: int, max_depth: int) -> list[str]:
    found: list[str] = []
    queue: deque[tuple[Any, int]] = deque([(payload, 0)])
    steps = 0
    while queue and steps < max_steps:
        steps += 1
        node, depth = queue.popleft()
        if isinstance(node, str):
            uuid = normalize_uuid(node)
            if uuid and uuid not in found:
                found.append(uuid)
            continue
        if depth >= max_depth:
            continue
        if isinstance(node, list):
            queue.extend((child, depth + 1) for child in node)
        elif isinstance(node, dict):
            queue.extend((child, depth + 1) for child in node.values())
    return found


def extract_codigo_solicitacao(
    payload: Any,
    *,
    max_steps: int = MAX_WALK_STEPS,
    max_depth: int = MAX_WALK_DEPTH,
) -> list[str]:
    """Returns the distinct cobrança ids in a webhook body, in order of appearance."""
    candidates: list[object] = []
    if isinstance(payload, list):
        for item in payload:
            candidates.extend(_explicit_codigo_candidates(item))
    else:
        candidates.extend(_explicit_codigo_candidates(payload))

    found: list[str] = []
    for candidate in candidates:
        uuid = normalize_uuid(candidate)
        if uuid and uuid not in found:
            found.append(uuid)
    if found:
        return found
    return _walk_uuids(payload, max_steps=max_steps, max_depth=max_depth)


def cobranca_value_hint(payload: Any, codigo_solicitacao: str) -> object | None:
    """Amount the webhook body advertises for a given cobrança, if any."""
    nodes = payload if isinstance(payload, list) else [payload]
    for node in nodes:
        if not isinstance(node, dict):
            continue
        for candidate in [node] + [node.get(key) for key in COBRANCA_CONTAINER_KEYS]:
            if not isinstance(candidate, dict):
                continue
            if normalize_uuid(candidate.get("codigoSolicitacao")) != codigo_solicitacao:
                continue
            for key in ("valorTotalRecebido", "valorNominal"):
                if candidate.get(key) is not None:
                    return candidate.get(key)
    return None
