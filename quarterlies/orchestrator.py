import logging
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .ai_source import PerplexitySource
from .calculator import (
    calculate_derived_metrics,
    merge_financial_data,
    round_financial_value,
    validate_required_metrics,
)
from .companies import DEFAULT_TEST_COMPANY, CompanyCatalog, CompanyTarget
from .config import AppConfig
from .errors import AllSourcesExhausted, FetchError, NoMeaningfulData, ParseFailure
from .http_fetch import RetryPolicy
from .indicators import has_meaningful_data
from .llm_client import LLMClient
from .models import CompanyError, CompanyResult, DataSource, QuarterRecord, RunResult
from .moneycontrol import MoneyControlSource
from .periods import is_selected
from .progress import ProgressSink, RunContext
from .run_logger import log_step, write_results
from .screener import ScreenerSource


logger = logging.getLogger(__name__)

DEFAULT_ESTIMATE_SECONDS = 30
MONEYCONTROL_TIMEOUT_SECONDS = 45

Acquired = Tuple[List[QuarterRecord], DataSource]


@dataclass(frozen=True)
class FallbackStep:
    number: int
    source: DataSource
    label: str
    stage: str
    progress: int
    fetch: Callable[[RunContext, CompanyTarget, int, Sequence[Any], Sequence[int]], Acquired]
    skip_reason: Optional[Callable[[CompanyTarget], Optional[str]]] = None


class FallbackOrchestrator:
    def __init__(
        self,
        screener: ScreenerSource,
        moneycontrol: MoneyControlSource,
        perplexity: PerplexitySource,
        catalog: Optional[CompanyCatalog] = None,
        output_dir: Optional[Path] = None,
        inter_company_delay: float = 2.0,
        default_quarter_count: int = 8,
        sleep_fn: Optional[Callable[[float], None]] = None,
    ) -> None:
        self.screener = screener
        self.moneycontrol = moneycontrol
        self.perplexity = perplexity
        self.catalog = catalog or moneycontrol.catalog
        self.output_dir = output_dir
        self.inter_company_delay = inter_company_delay
        self.default_quarter_count = default_quarter_count
        self._sleep = sleep_fn or time.sleep
        self.steps = [
            FallbackStep(1, DataSource.SCREENER, "Screener.in", "Extracting data from Screener.in", 10, self._from_screener),
            FallbackStep(
                2,
                DataSource.MONEYCONTROL,
                "MoneyControl",
                "Trying MoneyControl scraping",
                25,
                self._from_moneycontrol,
                skip_reason=self._moneycontrol_skip_reason,
            ),
            FallbackStep(3, DataSource.PERPLEXITY, "Perplexity AI", "Extracting data with Perplexity AI", 40, self._from_perplexity),
        ]

    def run(
        self,
        companies: Sequence[str],
        requested_quarters: Sequence[Any],
        requested_fiscal_years: Sequence[int],
        test_mode: bool = False,
        test_company: Optional[str] = None,
        sink: Optional[ProgressSink] = None,
    ) -> RunResult:
        names = [name.strip() for name in companies if name and name.strip()]
        if test_mode:
            names = [(test_company or "").strip() or (names[0] if names else DEFAULT_TEST_COMPANY)]
        if not names:
            error = CompanyError("System", "No companies to process", time.time())
            self._audit("run_rejected", {"error": error.error})
            return RunResult(results=[], errors=[error], success=False)

        targets = self.catalog.resolve(names)
        ctx = RunContext.for_companies([t.name for t in targets], sink=sink, test_mode=test_mode)
        quarter_count = max(len(requested_quarters) * len(requested_fiscal_years), self.default_quarter_count)
        self._audit(
            "run_start",
            {
                "companies": names,
                "quarters": [str(q) for q in requested_quarters],
                "fiscal_years": list(requested_fiscal_years),
                "test_mode": test_mode,
            },
        )
        ctx.add_log(f"Starting run for {len(targets)} compan{'y' if len(targets) == 1 else 'ies'}")
        ctx.emit()

        results: List[CompanyResult] = []
        errors: List[CompanyError] = []
        for idx, target in enumerate(targets):
            result = self._process_company(ctx, target, quarter_count, requested_quarters, requested_fiscal_years, errors)
            if result is not None:
                results.append(result)
            if idx < len(targets) - 1 and self.inter_company_delay > 0:
                ctx.add_log(f"[Rate Limit] Waiting {self.inter_company_delay:.1f}s before next company...")
                ctx.emit()
                self._sleep(self.inter_company_delay)

        run_result = RunResult(results=results, errors=errors, success=bool(results))
        ctx.current_step = "Completed" if run_result.success else "Failed"
        ctx.add_log(f"Run finished: {len(results)} completed, {len(errors)} failed")
        ctx.emit()
        self._audit(
            "run_summary",
            {"completed": ctx.completed, "failed": ctx.failed, "success": run_result.success},
        )
        if self.output_dir is not None:
            write_results(self.output_dir, run_result.to_dict())
        return run_result

    def _process_company(
        self,
        ctx: RunContext,
        target: CompanyTarget,
        quarter_count: int,
        requested_quarters: Sequence[Any],
        requested_fiscal_years: Sequence[int],
        errors: List[CompanyError],
    ) -> Optional[CompanyResult]:
        company = target.name
        started = time.time()
        ctx.start(company, self._estimate_seconds(ctx))
        try:
            quarters, source = self._acquire(ctx, target, quarter_count, requested_quarters, requested_fiscal_years)

            ctx.update(company, stage="Processing extracted data", progress=60)
            selected = [q for q in quarters if is_selected(q.canonical_period, requested_quarters, requested_fiscal_years)]
            dropped = len(quarters) - len(selected)
            if dropped:
                ctx.add_log(f"[Filter] Dropped {dropped} quarter(s) outside the requested selection for {company}")

            ctx.update(company, stage="Calculating derived metrics", progress=75)
            enriched = [self._with_metrics(company, q) for q in selected]
            result = CompanyResult(company_name=company, data_source_used=source, quarters=enriched)

            elapsed = round(time.time() - started)
            ctx.mark_completed(
                company,
                f"[Complete] {company} processed in {elapsed}s via {source.value}",
                stage=f"Completed ({source.value})",
            )
            self._audit(
                "company_completed",
                {"company": company, "data_source": source.value, "quarters": len(enriched)},
            )
            return result
        except AllSourcesExhausted as exc:
            self._record_failure(ctx, errors, company, str(exc), "All 3 fallback steps failed")
        except Exception as exc:
            logger.exception("Unexpected error processing %s", company)
            self._record_failure(ctx, errors, company, str(exc), f"Error: {str(exc)[:100]}")
        return None

    def _acquire(
        self,
        ctx: RunContext,
        target: CompanyTarget,
        quarter_count: int,
        requested_quarters: Sequence[Any],
        requested_fiscal_years: Sequence[int],
    ) -> Acquired:
        company = target.name
        failures: List[FetchError] = []
        for step in self.steps:
            reason = step.skip_reason(target) if step.skip_reason else None
            if reason:
                ctx.add_log(f"[Step {step.number}] Skipping {step.label} - {reason}")
                ctx.emit()
                self._audit("step_skipped", {"company": company, "step": step.number, "reason": reason})
                continue

            ctx.update(
                company,
                f"[Step {step.number}] Attempting {step.label} for {company}",
                stage=f"Step {step.number}: {step.stage}",
                data_source=step.source,
                fallback_step=step.number,
                switched_source=step.number > 1,
                progress=step.progress,
            )
            try:
                quarters, source = step.fetch(ctx, target, quarter_count, requested_quarters, requested_fiscal_years)
                if not has_meaningful_data(quarters):
                    raise NoMeaningfulData(f"No valid data extracted from {step.label}", source=source.value)
            except Exception as exc:
                error = _as_fetch_error(exc, step.source)
                failures.append(error)
                ctx.update(company, f"[Step {step.number}] {step.label} failed for {company}: {error}")
                self._audit(
                    "step_failed",
                    {"company": company, "step": step.number, "kind": error.kind, "error": str(error)},
                )
                continue

            ctx.update(
                company,
                f"[Step {step.number}] SUCCESS: Got {len(quarters)} quarters for {company} from {source.value}",
                data_source=source,
                progress=50,
            )
            self._audit(
                "step_succeeded",
                {"company": company, "step": step.number, "data_source": source.value, "quarters": len(quarters)},
            )
            return quarters, source
        raise AllSourcesExhausted(company, failures)

    def _from_screener(self, ctx, target, quarter_count, requested_quarters, requested_fiscal_years) -> Acquired:
        return self.screener.fetch(target.name, quarter_count), DataSource.SCREENER

    def _moneycontrol_skip_reason(self, target: CompanyTarget) -> Optional[str]:
        if target.moneycontrol_url:
            return None
        return f"no URL configured for {target.name}"

    def _from_moneycontrol(self, ctx, target, quarter_count, requested_quarters, requested_fiscal_years) -> Acquired:
        return self.moneycontrol.fetch_url(target.moneycontrol_url, quarter_count, target.name), DataSource.MONEYCONTROL

    def _from_perplexity(self, ctx, target, quarter_count, requested_quarters, requested_fiscal_years) -> Acquired:
        company = target.name
        try:
            quarters = self.perplexity.fetch(company, quarter_count, list(requested_quarters), list(requested_fiscal_years))
            if has_meaningful_data(quarters):
                return quarters, DataSource.PERPLEXITY
            extraction_error: FetchError = NoMeaningfulData(
                "No valid data from AI extraction", source=DataSource.PERPLEXITY.value
            )
        except Exception as exc:
            extraction_error = _as_fetch_error(exc, DataSource.PERPLEXITY)

        ctx.update(
            company,
            f"[Step 3] AI extraction failed ({extraction_error}); asking for a MoneyControl URL",
            stage="Step 3: Getting URL from Perplexity AI",
        )
        url = self.perplexity.resolve_source_url(company)
        if not url:
            raise extraction_error
        ctx.update(company, f"[Step 3] Perplexity found URL: {url}")
        return self.moneycontrol.fetch_url(url, quarter_count, company), DataSource.MONEYCONTROL

    def _with_metrics(self, company: str, quarter: QuarterRecord) -> QuarterRecord:
        metrics, issues = calculate_derived_metrics(quarter.raw_indicators)
        issues = validate_required_metrics(quarter.raw_indicators) + issues
        if issues:
            logger.warning(
                "Validation issues for %s %s: %s",
                company,
                quarter.canonical_period,
                "; ".join(f"{i.metric}: {i.message}" for i in issues),
            )
        merged = merge_financial_data(quarter.raw_indicators, metrics)
        return replace(
            quarter,
            derived_metrics=metrics,
            issues=issues,
            financial_data={name: round_financial_value(value) for name, value in merged.items()},
        )

    def _estimate_seconds(self, ctx: RunContext) -> int:
        finished = len(ctx.completed)
        if not finished:
            return DEFAULT_ESTIMATE_SECONDS
        return round((time.time() - ctx.started_at) / finished)

    def _record_failure(
        self,
        ctx: RunContext,
        errors: List[CompanyError],
        company: str,
        message: str,
        stage: str,
    ) -> None:
        errors.append(CompanyError(company=company, error=message, timestamp=time.time()))
        ctx.mark_failed(company, f"[Error] {company} failed: {message[:100]}", stage=stage)
        self._audit("company_failed", {"company": company, "error": message})

    def _audit(self, step: str, payload: Dict[str, Any]) -> None:
        if self.output_dir is not None:
            log_step(self.output_dir, step, payload)


def build_orchestrator(
    config: AppConfig,
    llm=None,
    catalog: Optional[CompanyCatalog] = None,
    output_dir: Optional[Path] = None,
    get_fn: Optional[Callable[..., Any]] = None,
    sleep_fn: Optional[Callable[[float], None]] = None,
) -> FallbackOrchestrator:
    if catalog is None:
        catalog = CompanyCatalog.from_file(config.company_catalog_path)
    if llm is None:
        llm = LLMClient(
            provider=config.llm_provider,
            model=config.llm_model_name,
            api_key=config.llm_api_key,
            base_url=config.llm_base_url,
            timeout=config.llm_timeout_seconds,
            max_retries=config.llm_max_retries,
        )
    policy = RetryPolicy(
        max_attempts=config.http_max_attempts,
        base_delay=config.retry_base_delay_seconds,
        timeout=config.http_timeout_seconds,
    )
    return FallbackOrchestrator(
        screener=ScreenerSource(policy=policy, get_fn=get_fn, sleep_fn=sleep_fn),
        moneycontrol=MoneyControlSource(
            catalog=catalog,
            policy=replace(policy, timeout=max(policy.timeout, MONEYCONTROL_TIMEOUT_SECONDS)),
            get_fn=get_fn,
            sleep_fn=sleep_fn,
        ),
        perplexity=PerplexitySource(llm),
        catalog=catalog,
        output_dir=output_dir,
        inter_company_delay=config.inter_company_delay_seconds,
        default_quarter_count=config.default_quarter_count,
        sleep_fn=sleep_fn,
    )


def _as_fetch_error(exc: Exception, source: DataSource) -> FetchError:
    if isinstance(exc, FetchError):
        return exc
    logger.exception("Unexpected error from %s", source.value)
    return ParseFailure(f"{type(exc).__name__}: {exc}", source=source.value)
