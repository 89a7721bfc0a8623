"""Data models for surface facts, machine outcomes and run reports."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from autodl.constants import ALLOWED_RESULT_VALUES, REQUIRED_REPORT_KEYS
from autodl.web_common import collapse_ws


@dataclass(frozen=True)
class ElementFacts:
    """Read-only facts about one element, captured at query time.

    ``selector`` and ``index`` locate the element again in the live document
    (``document.querySelectorAll(selector)[index]``); no page-side handle is
    kept between queries.
    """

    selector: str = field(default="", compare=False)
    index: int = field(default=0, compare=False)
    tag: str = ""
    text: str = ""
    aria_label: str = ""
    title: str = ""
    href: str = ""
    resolved_href: str = ""
    has_download_attr: bool = False
    test_id: str = ""
    disabled: bool = False
    display: str = ""
    visibility: str = ""
    opacity: str = ""
    style_error: bool = False
    rect_count: int = 0
    width: float = 0.0
    height: float = 0.0
    top: float = 0.0
    bottom: float = 0.0
    viewport_height: float = 0.0
    aria_hidden_ancestor: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, selector: str = "", index: int = 0) -> "ElementFacts":
        return cls(
            selector=selector,
            index=index,
            tag=str(payload.get("tag") or "").lower(),
            text=str(payload.get("text") or ""),
            aria_label=str(payload.get("ariaLabel") or ""),
            title=str(payload.get("title") or ""),
            href=str(payload.get("href") or ""),
            resolved_href=str(payload.get("resolvedHref") or ""),
            has_download_attr=bool(payload.get("hasDownloadAttr", False)),
            test_id=str(payload.get("testId") or ""),
            disabled=bool(payload.get("disabled", False)),
            display=str(payload.get("display") or ""),
            visibility=str(payload.get("visibility") or ""),
            opacity=str(payload.get("opacity") or ""),
            style_error=bool(payload.get("styleError", False)),
            rect_count=_as_int(payload.get("rectCount")),
            width=_as_float(payload.get("width")),
            height=_as_float(payload.get("height")),
            top=_as_float(payload.get("top")),
            bottom=_as_float(payload.get("bottom")),
            viewport_height=_as_float(payload.get("viewportHeight")),
            aria_hidden_ancestor=bool(payload.get("ariaHiddenAncestor", False)),
        )

    def describe(self) -> str:
        label = collapse_ws(self.text or self.aria_label or self.title or self.href)[:80]
        return f"<{self.tag or 'element'}> '{label}'"


@dataclass(frozen=True)
class Candidate:
    element: ElementFacts
    tier: int
    source: str

    def describe(self) -> str:
        return f"{self.element.describe()} (tier {self.tier}, {self.source})"


@dataclass(frozen=True)
class BusySignal:
    busy: bool
    indicator: str = ""


@dataclass(frozen=True)
class MachineOutcome:
    state: str
    candidate: str = ""
    activated: bool = False
    resolved_by: str = ""
    ledger_value: int = 0
    busy_backoffs: int = 0
    history: tuple[str, ...] = ()


@dataclass(frozen=True)
class RunReport:
    run_id: str
    url: str
    final_state: str
    result: str
    reloads: int
    instances: int
    observations: list[str]
    downloads: list[str]
    log_path: str

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "RunReport":
        keys = set(payload.keys())
        expected = set(REQUIRED_REPORT_KEYS)
        if keys != expected:
            missing = sorted(expected - keys)
            extra = sorted(keys - expected)
            raise ValueError(f"Invalid keys. missing={missing}, extra={extra}")

        report = cls(
            run_id=_expect_str(payload, "run_id"),
            url=_expect_str(payload, "url"),
            final_state=_expect_str(payload, "final_state"),
            result=_expect_str(payload, "result"),
            reloads=_expect_int(payload, "reloads"),
            instances=_expect_int(payload, "instances"),
            observations=_expect_str_list(payload, "observations"),
            downloads=_expect_str_list(payload, "downloads"),
            log_path=_expect_str(payload, "log_path"),
        )
        if report.result not in ALLOWED_RESULT_VALUES:
            raise ValueError(
                f"Invalid result '{report.result}'. Must be one of "
                f"{sorted(ALLOWED_RESULT_VALUES)}"
            )
        return report

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_float(value: Any) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _expect_str(payload: dict[str, Any], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _expect_int(payload: dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"'{key}' must be a non-negative integer")
    return value


def _expect_str_list(payload: dict[str, Any], key: str) -> list[str]:
    value = payload[key]
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list of strings")
    if any(not isinstance(item, str) for item in value):
        raise ValueError(f"'{key}' must contain only strings")
    return value
