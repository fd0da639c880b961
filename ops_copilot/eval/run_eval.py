"""
Score copilot answers for a set of questions and both prompt versions.

Each case in the JSON Lines file is posted to /api/copilot of an already
running service. Answers are scored on four axes:

    schema_pass            1 if the answer (minus meta) passes the contract
    actionability          0-5, one point per recommended action, +1 when an
                           action names an owner ("[Owner: ...]")
    specificity_to_data    0-5, one point per cited data point, -1 when no
                           citation carries an ISO date
    hallucination_penalty  0-5, starts at 5; loses 1 per channel or store
                           name and 0.5 per number (first 8 distinct) that
                           appear in the answer but in no cited data point

Non-2xx answers and answers failing the contract score 0 everywhere.
Results are written as latest.json and latest.md to the output directory.
The process exits 1 when any case failed the contract.

Environment:
    EVAL_BASE_URL     service root (default http://127.0.0.1:8000)
    COPILOT_API_KEY   value for the x-api-key header (default dev_local_key)
"""

import argparse
import asyncio
import json
import logging
import os
import re
import sys
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
import pandas as pd

from ops_copilot.services.demo_data import CHANNELS, STORES
from ops_copilot.services.schema_validation import validate_copilot_response


logger = logging.getLogger(__name__)


DEFAULT_CASES_PATH: Path = Path(__file__).resolve().parent / "cases.jsonl"

DEFAULT_BASE_URL: str = "http://127.0.0.1:8000"

# The copilot allows 10 requests per minute per client
CASE_PAUSE_SECONDS: float = 6.5

RATE_LIMIT_FALLBACK_WAIT_MS: int = 6500

REQUEST_TIMEOUT_SECONDS: float = 30.0

MAX_SCORE: float = 5.0

MAX_NUMERIC_CLAIMS: int = 8

_DATE = re.compile(r"\b\d{4}-\d{2}-\d{2}\b")
_NUMBER = re.compile(r"\b\d+(?:\.\d+)?%?\b")

SCORE_KEYS = ("schema_pass", "actionability", "specificity_to_data", "hallucination_penalty")


@dataclass(frozen=True)
class EvalCase:
    id: str
    query: str
    prompt_version: str = "v1"


@dataclass
class CaseResult:
    id: str
    prompt_version: str
    query: str
    schema_pass: bool
    latency_ms: int
    scores: Dict[str, float] = field(default_factory=lambda: dict.fromkeys(SCORE_KEYS, 0))
    error: Optional[str] = None
    output: Any = None


# =============================================================================
# Cases
# =============================================================================


def read_cases(path: Path) -> List[EvalCase]:
    """Parse a JSON Lines case file; blank lines are skipped."""
    cases = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        raw = json.loads(line)
        cases.append(
            EvalCase(
                id=str(raw["id"]),
                query=raw["query"],
                prompt_version=raw.get("prompt_version", "v1"),
            )
        )
    return cases


# =============================================================================
# Scoring
# =============================================================================


def _list(output: Any, key: str) -> List[Any]:
    value = output.get(key) if isinstance(output, dict) else None
    return value if isinstance(value, list) else []


def score_actionability(output: Dict[str, Any]) -> float:
    actions = _list(output, "recommended_actions")
    score = min(MAX_SCORE, len(actions))
    has_owner = any(
        isinstance(item, dict) and "[Owner:" in str(item.get("action", ""))
        for item in actions
    )
    if has_owner:
        score = min(MAX_SCORE, score + 1)
    return score


def score_specificity(output: Dict[str, Any]) -> float:
    used = _list(output, "used_data_points")
    score = min(MAX_SCORE, len(used))
    if score > 0 and not any(_DATE.search(str(point)) for point in used):
        score -= 1
    return max(0.0, score)


def score_hallucination_penalty(output: Dict[str, Any]) -> float:
    """
    Penalize names and numbers the answer asserts without citing them.

    Only the prose fields are checked: summary, key_drivers, and each
    recommended action and reason.
    """
    used_text = "\n".join(str(point) for point in _list(output, "used_data_points"))

    parts = [output.get("summary")] + _list(output, "key_drivers")
    for item in _list(output, "recommended_actions"):
        if isinstance(item, dict):
            parts.extend([item.get("action"), item.get("reason")])
    text = "\n".join(str(part) for part in parts if part)

    score = MAX_SCORE
    for word in list(CHANNELS) + list(STORES):
        if word in text and word not in used_text:
            score -= 1

    claims = list(dict.fromkeys(_NUMBER.findall(text)))[:MAX_NUMERIC_CLAIMS]
    for token in claims:
        if token not in used_text:
            score -= 0.5

    return max(0.0, min(MAX_SCORE, round(score, 1)))


def score_answer(payload: Any) -> Dict[str, Any]:
    """
    Validate one copilot response body and score it.

    Returns:
        Dict with schema_pass, error (None on success) and scores.
    """
    answer = {k: v for k, v in payload.items() if k != "meta"} if isinstance(payload, dict) else payload
    validation = validate_copilot_response(answer)
    if not validation.ok:
        return {
            "schema_pass": False,
            "error": validation.error,
            "scores": dict.fromkeys(SCORE_KEYS, 0),
        }
    return {
        "schema_pass": True,
        "error": None,
        "scores": {
            "schema_pass": 1,
            "actionability": score_actionability(answer),
            "specificity_to_data": score_specificity(answer),
            "hallucination_penalty": score_hallucination_penalty(answer),
        },
    }


# =============================================================================
# Running
# =============================================================================


def _rate_limit_wait_seconds(response: httpx.Response, now_ms: int) -> float:
    try:
        reset_at_ms = int(response.headers.get("x-ratelimit-reset", ""))
    except ValueError:
        reset_at_ms = 0
    if reset_at_ms > now_ms:
        return (reset_at_ms - now_ms + 250) / 1000
    return RATE_LIMIT_FALLBACK_WAIT_MS / 1000


async def wait_for_server(client: httpx.AsyncClient, timeout_seconds: float) -> None:
    """
    Poll /health until the service answers.

    Raises:
        RuntimeError: If the service did not answer within timeout_seconds.
    """
    deadline = time.monotonic() + timeout_seconds
    while True:
        try:
            response = await client.get("/health", timeout=3.0)
            if response.status_code == 200:
                return
        except httpx.HTTPError as e:
            logger.debug(f"Service not reachable yet: {e}")
        if time.monotonic() >= deadline:
            raise RuntimeError(
                f"Timed out waiting for {client.base_url}. Start the service or set EVAL_BASE_URL."
            )
        await asyncio.sleep(0.5)


async def evaluate_case(
    client: httpx.AsyncClient,
    case: EvalCase,
    api_key: str,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CaseResult:
    """Post one case, retrying once after a 429, and score the answer."""
    started = time.monotonic()

    def elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        for attempt in range(2):
            response = await client.post(
                "/api/copilot",
                json={"query": case.query, "prompt_version": case.prompt_version},
                headers={"x-api-key": api_key},
            )
            if response.status_code != 429 or attempt == 1:
                break
            wait = _rate_limit_wait_seconds(response, int(time.time() * 1000))
            logger.info(f"Rate limited (429). Waiting {wait:.1f}s")
            await sleep(wait)

        try:
            payload = response.json()
        except ValueError:
            payload = {}
    except httpx.HTTPError as e:
        return CaseResult(
            id=case.id,
            prompt_version=case.prompt_version,
            query=case.query,
            schema_pass=False,
            latency_ms=elapsed_ms(),
            error=f"{type(e).__name__}: {e}",
        )

    if not response.is_success:
        error = payload.get("error") if isinstance(payload, dict) else None
        return CaseResult(
            id=case.id,
            prompt_version=case.prompt_version,
            query=case.query,
            schema_pass=False,
            latency_ms=elapsed_ms(),
            error=error or f"HTTP {response.status_code}",
            output=payload,
        )

    scored = score_answer(payload)
    return CaseResult(
        id=case.id,
        prompt_version=case.prompt_version,
        query=case.query,
        schema_pass=scored["schema_pass"],
        latency_ms=elapsed_ms(),
        scores=scored["scores"],
        error=scored["error"],
        output=payload,
    )


async def run_cases(
    client: httpx.AsyncClient,
    cases: Sequence[EvalCase],
    api_key: str,
    pause_seconds: float = CASE_PAUSE_SECONDS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[CaseResult]:
    results = []
    for index, case in enumerate(cases):
        if index and pause_seconds > 0:
            await sleep(pause_seconds)
        result = await evaluate_case(client, case, api_key, sleep=sleep)
        logger.info(
            f"{case.id} ({case.prompt_version}): "
            f"{'pass' if result.schema_pass else 'fail'} in {result.latency_ms}ms"
        )
        results.append(result)
    return results


# =============================================================================
# Reports
# =============================================================================


def _averages(frame: pd.DataFrame) -> Dict[str, float]:
    return {
        "case_count": int(len(frame)),
        "schema_pass_rate": float(frame["schema_pass"].mean()) if len(frame) else 0.0,
        "avg_actionability": float(frame["actionability"].mean()) if len(frame) else 0.0,
        "avg_specificity": float(frame["specificity_to_data"].mean()) if len(frame) else 0.0,
        "avg_hallucination_penalty": float(frame["hallucination_penalty"].mean()) if len(frame) else 0.0,
    }


def summarize(results: Sequence[CaseResult], base_url: str) -> Dict[str, Any]:
    """
    Aggregate results overall and per prompt version.

    Returns:
        Summary dict; by_prompt_version maps "v1"/"v2" to the same averages.
    """
    frame = pd.DataFrame(
        [{"prompt_version": r.prompt_version, **r.scores} for r in results],
        columns=["prompt_version", *SCORE_KEYS],
    )
    return {
        "ran_at": datetime.now(timezone.utc).isoformat(),
        "base_url": base_url,
        **_averages(frame),
        "by_prompt_version": {
            str(version): _averages(group)
            for version, group in frame.groupby("prompt_version", sort=True)
        },
    }


def to_markdown(results: Sequence[CaseResult], summary: Dict[str, Any]) -> str:
    lines = [
        "# Copilot Eval Results",
        "",
        f"Run at: {summary['ran_at']}",
        f"Base URL: {summary['base_url']}",
        f"Cases: {summary['case_count']}",
        "",
        "## Score Summary",
        "",
        f"- Schema pass rate: {summary['schema_pass_rate'] * 100:.1f}%",
        f"- Avg actionability: {summary['avg_actionability']:.2f}",
        f"- Avg specificity: {summary['avg_specificity']:.2f}",
        f"- Avg hallucination penalty: {summary['avg_hallucination_penalty']:.2f}",
        "",
        "## Prompt Versions",
        "",
        "| version | cases | schema | actionability | specificity | hallucination |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for version, stats in summary["by_prompt_version"].items():
        lines.append(
            f"| {version} | {stats['case_count']} | {stats['schema_pass_rate'] * 100:.1f}% | "
            f"{stats['avg_actionability']:.2f} | {stats['avg_specificity']:.2f} | "
            f"{stats['avg_hallucination_penalty']:.2f} |"
        )

    lines += [
        "",
        "## Per-Case",
        "",
        "| id | version | schema | actionability | specificity | hallucination |",
        "| --- | --- | --- | --- | --- | --- |",
    ]
    for r in results:
        lines.append(
            f"| {r.id} | {r.prompt_version} | {'pass' if r.schema_pass else 'fail'} | "
            f"{r.scores['actionability']} | {r.scores['specificity_to_data']} | "
            f"{r.scores['hallucination_penalty']} |"
        )

    failures = [r for r in results if not r.schema_pass]
    if failures:
        lines += ["", "## Failures", ""]
        lines += [f"- {r.id}: {r.error or 'schema validation failed'}" for r in failures]

    return "\n".join(lines) + "\n"


def write_reports(results: Sequence[CaseResult], summary: Dict[str, Any], out_dir: Path) -> List[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    json_path = out_dir / "latest.json"
    md_path = out_dir / "latest.md"
    json_path.write_text(
        json.dumps({"summary": summary, "results": [asdict(r) for r in results]}, indent=2),
        encoding="utf-8",
    )
    md_path.write_text(to_markdown(results, summary), encoding="utf-8")
    return [json_path, md_path]


# =============================================================================
# Entry Point
# =============================================================================


async def run_eval(
    base_url: str,
    api_key: str,
    cases: Sequence[EvalCase],
    out_dir: Path,
    pause_seconds: float = CASE_PAUSE_SECONDS,
    server_timeout_seconds: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Run every case against base_url and write the reports. Returns the summary."""
    async with httpx.AsyncClient(
        base_url=base_url,
        timeout=REQUEST_TIMEOUT_SECONDS,
        transport=transport,
    ) as client:
        await wait_for_server(client, server_timeout_seconds)
        results = await run_cases(client, cases, api_key, pause_seconds=pause_seconds)

    summary = summarize(results, base_url)
    for path in write_reports(results, summary, out_dir):
        logger.info(f"Wrote {path}")
    return summary


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Score copilot answers for v1 and v2 prompts")
    parser.add_argument("--base-url", default=os.environ.get("EVAL_BASE_URL", DEFAULT_BASE_URL))
    parser.add_argument("--api-key", default=os.environ.get("COPILOT_API_KEY", "dev_local_key"))
    parser.add_argument("--cases", type=Path, default=DEFAULT_CASES_PATH, help="JSON Lines case file")
    parser.add_argument("--out", type=Path, default=Path("data") / "eval", help="Report directory")
    parser.add_argument("--pause", type=float, default=CASE_PAUSE_SECONDS, help="Seconds between cases")
    parser.add_argument("--server-timeout", type=float, default=5.0)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        summary = asyncio.run(
            run_eval(
                base_url=args.base_url,
                api_key=args.api_key,
                cases=read_cases(args.cases),
                out_dir=args.out,
                pause_seconds=args.pause,
                server_timeout_seconds=args.server_timeout,
            )
        )
    except (RuntimeError, OSError, ValueError, KeyError) as e:
        logger.error(f"Eval failed: {e}")
        return 1

    if summary["case_count"] and summary["schema_pass_rate"] < 1.0:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
