"""
Orchestrator - User-facing API for the query pipeline.

    Question -> QueryParser -> (tool routing | KnowledgeExtractor) -> KnowledgeSynthesizer -> Answer

Every call to ``process`` returns a UniversalAnswer. Low parse confidence,
insufficient knowledge, internal errors and deadline expiry all produce a
degraded answer instead of an exception. Only missing configuration fails
fast, when the real providers are built.

Example usage:
    from universal_edgar.orchestrator import Orchestrator

    orc = Orchestrator.from_config()
    answer = orc.process("Show me Apple's last 2 filings")
    print(answer.narrative)
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from universal_edgar.answers import (
    deadline_answer,
    error_answer,
    insufficient_data_answer,
    low_confidence_answer,
)
from universal_edgar.config import PipelineConfig, default_config
from universal_edgar.edgar_client import SECEdgarClient
from universal_edgar.errors import DeadlineExceeded, EdgarPipelineError, SynthesisFailure
from universal_edgar.extractor import KnowledgeExtractor
from universal_edgar.llm import AnthropicTextProvider
from universal_edgar.mcp_client import McpToolClient
from universal_edgar.models import KnowledgeSet, StructuredQuery, UniversalAnswer
from universal_edgar.observability import QueryAudit, log_gate_decision, log_pipeline_event
from universal_edgar.parser import QueryParser
from universal_edgar.pipeline import Pipeline, Stage, StageResult
from universal_edgar.synthesizer import KnowledgeSynthesizer
from universal_edgar.ports import ToolClient
from universal_edgar.tool_router import EdgarToolClient, RouteResult, ToolRoutingKnowledgeProvider

logger = logging.getLogger(__name__)

HEALTH_CHECK_QUERY = "What is Tesla's business?"


@dataclass
class QueryContext:
    """Everything produced so far for one query (read by the deadline path)."""
    text: str
    audit: QueryAudit
    query: Optional[StructuredQuery] = None
    knowledge: Optional[KnowledgeSet] = None
    route: Optional[RouteResult] = None
    started: float = field(default_factory=time.perf_counter)
    cancelled: threading.Event = field(default_factory=threading.Event)

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class Orchestrator:
    """Wires parser, knowledge providers and synthesizer behind confidence gates.

    Args:
        parser: QueryParser
        extractor: Direct KnowledgeExtractor
        synthesizer: KnowledgeSynthesizer
        alternate: Optional tool-routing provider tried before direct extraction
        config: Gates and default deadline
    """

    def __init__(
        self,
        parser: QueryParser,
        extractor: KnowledgeExtractor,
        synthesizer: KnowledgeSynthesizer,
        alternate: Optional[ToolRoutingKnowledgeProvider] = None,
        config: Optional[PipelineConfig] = None,
    ):
        self.parser = parser
        self.extractor = extractor
        self.synthesizer = synthesizer
        self.alternate = alternate
        self.config = config or default_config

    @classmethod
    def from_config(cls, config: Optional[PipelineConfig] = None) -> "Orchestrator":
        """Build real providers from configuration.

        Raises:
            ConfigurationError: If credentials are missing
        """
        config = config or PipelineConfig.from_env()
        config.validate()

        directory = SECEdgarClient.from_config(config)
        parser = QueryParser(AnthropicTextProvider(
            api_key=config.anthropic_api_key,
            model=config.parser_model,
            timeout=config.llm_timeout_seconds,
        ))
        synthesizer = KnowledgeSynthesizer(
            AnthropicTextProvider(
                api_key=config.anthropic_api_key,
                model=config.synthesis_model,
                timeout=config.llm_timeout_seconds,
                max_tokens=2048,
                temperature=0.2,
            ),
            filings_host=config.filings_host,
        )
        extractor = KnowledgeExtractor(
            directory,
            max_workers=config.max_workers,
            filings_host=config.filings_host,
        )
        alternate = None
        if config.use_tool_router:
            tool_client: ToolClient
            if config.mcp_server_url:
                tool_client = McpToolClient(
                    config.mcp_server_url,
                    transport=config.mcp_transport,
                    timeout=config.mcp_timeout_seconds,
                )
            else:
                tool_client = EdgarToolClient(directory)
            alternate = ToolRoutingKnowledgeProvider(tool_client, filings_host=config.filings_host)
        return cls(parser, extractor, synthesizer, alternate=alternate, config=config)

    # =========================================================================
    # Stages
    # =========================================================================

    def _check_cancelled(self, ctx: QueryContext) -> None:
        if ctx.cancelled.is_set():
            raise DeadlineExceeded("Query deadline expired", details={"elapsed_ms": round(ctx.elapsed_ms(), 2)})

    def _parse(self, ctx: QueryContext) -> StageResult[QueryContext]:
        ctx.query = self.parser.parse(ctx.text)
        passed = log_gate_decision(
            "parse", ctx.query.confidence, self.config.parse_confidence_gate, ctx.audit.query_id
        )
        ctx.audit.record_gate(passed)
        if not passed:
            return StageResult.halt(low_confidence_answer(ctx.text, ctx.query), "low_confidence_parse")
        return StageResult.proceed(ctx)

    def _route(self, ctx: QueryContext) -> StageResult[QueryContext]:
        self._check_cancelled(ctx)
        if self.alternate is None:
            return StageResult.proceed(ctx)
        try:
            route = self.alternate.route(ctx.query, ctx.cancelled)
        except Exception as e:
            logger.warning(f"Tool routing failed, falling back to direct extraction: {e}")
            ctx.audit.record_error(f"routing: {e}")
            return StageResult.proceed(ctx)

        ctx.route = route
        ctx.audit.tools_used = list(route.tools_used)
        passed = route.success and log_gate_decision(
            "alternate", route.confidence, self.config.alternate_confidence_gate, ctx.audit.query_id
        )
        ctx.audit.record_gate(passed)
        if not passed:
            return StageResult.proceed(ctx)

        try:
            knowledge = self.alternate.to_knowledge_set(route, ctx.query)
        except Exception as e:
            logger.warning(f"Routed data could not be converted, using direct extraction: {e}")
            ctx.audit.record_error(f"routing conversion: {e}")
            return StageResult.proceed(ctx)

        missing = self.alternate.missing_coverage(knowledge, ctx.query)
        if missing:
            logger.info(f"Routed data incomplete ({', '.join(missing)}), using direct extraction")
        else:
            ctx.knowledge = knowledge
        return StageResult.proceed(ctx)

    def _extract(self, ctx: QueryContext) -> StageResult[QueryContext]:
        self._check_cancelled(ctx)
        if ctx.knowledge is None:
            ctx.knowledge = self.extractor.extract(ctx.query, ctx.cancelled)
        passed = log_gate_decision(
            "extraction", ctx.knowledge.confidence, self.config.extraction_confidence_gate, ctx.audit.query_id
        )
        ctx.audit.record_gate(passed)
        if not passed:
            return StageResult.halt(
                insufficient_data_answer(ctx.text, ctx.query, ctx.knowledge), "insufficient_data"
            )
        return StageResult.proceed(ctx)

    def _synthesize(self, ctx: QueryContext) -> UniversalAnswer:
        self._check_cancelled(ctx)
        try:
            answer = self.synthesizer.synthesize(ctx.query, ctx.knowledge)
        except Exception as e:
            raise SynthesisFailure(f"Answer synthesis failed: {e}") from e
        return answer.with_metadata(
            processing_time_ms=ctx.elapsed_ms(),
            **self._provenance(ctx),
        )

    def _provenance(self, ctx: QueryContext) -> Dict[str, Any]:
        routed = ctx.knowledge is not None and ctx.knowledge.provider == "tool_router"
        if routed and ctx.route is not None:
            return {"data_source": "Tool routing + Direct", "tools_used": list(ctx.route.tools_used)}
        return {"data_source": "Direct", "tools_used": []}

    # =========================================================================
    # Processing
    # =========================================================================

    def _run(self, ctx: QueryContext) -> UniversalAnswer:
        def on_transition(state: str) -> None:
            ctx.audit.final_state = state

        pipeline: Pipeline[QueryContext] = Pipeline(
            stages=[
                Stage("parsing", self._parse),
                Stage("routing", self._route),
                Stage("extracting", self._extract),
                Stage("synthesizing", lambda c: StageResult.proceed(c)),
            ],
            finish=self._synthesize,
            on_transition=on_transition,
        )
        try:
            answer = pipeline.run(ctx)
        except Exception as e:
            if ctx.cancelled.is_set():
                raise
            message = e.message if isinstance(e, EdgarPipelineError) else str(e)
            logger.error(f"Query processing failed: {type(e).__name__}: {message}")
            ctx.audit.record_error(message)
            pipeline.transition("system_error")
            return error_answer(ctx.text, message)

        if answer.metadata.pipeline_state != "done":
            answer = answer.with_metadata(processing_time_ms=ctx.elapsed_ms())
        return answer

    def _degraded(self, ctx: QueryContext, deadline_seconds: float) -> UniversalAnswer:
        """Best answer from whatever finished before the deadline."""
        ctx.cancelled.set()
        ctx.audit.final_state = "deadline_exceeded"
        ctx.audit.record_error("deadline exceeded")
        logger.warning(f"Query deadline of {deadline_seconds}s exceeded")

        answer: Optional[UniversalAnswer] = None
        if ctx.query is not None and ctx.knowledge is not None:
            try:
                answer = self.synthesizer.fallback_answer(ctx.query, ctx.knowledge).with_metadata(
                    **self._provenance(ctx)
                )
            except Exception as e:
                logger.error(f"Fallback synthesis failed: {e}")
        elif ctx.query is not None:
            answer = insufficient_data_answer(ctx.text, ctx.query, ctx.knowledge)
        if answer is None:
            answer = deadline_answer(ctx.text, deadline_seconds)
        return answer.with_metadata(pipeline_state="deadline_exceeded", processing_time_ms=ctx.elapsed_ms())

    def process(self, text: str, deadline_seconds: Optional[float] = None) -> UniversalAnswer:
        """Answer one question. Never raises.

        Args:
            text: Natural-language question
            deadline_seconds: Overall time limit; defaults to the configured
                deadline, None in both places means no limit
        """
        deadline = deadline_seconds if deadline_seconds is not None else self.config.deadline_seconds
        ctx = QueryContext(text=text, audit=QueryAudit(f"q_{int(time.time() * 1000)}"))
        log_pipeline_event("query", status="started", details={"query_id": ctx.audit.query_id})

        if deadline is None:
            answer = self._run(ctx)
        else:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="query")
            future = executor.submit(self._run, ctx)
            try:
                answer = future.result(timeout=deadline)
            except FutureTimeout:
                answer = self._degraded(ctx, deadline)
            finally:
                # The worker stops at its next stage boundary or directory call
                executor.shutdown(wait=False)

        ctx.audit.log_summary()
        return answer

    def _tool_server_reachable(self) -> Optional[bool]:
        """None unless tools are served remotely."""
        tool_client = self.alternate.tool_client if self.alternate is not None else None
        if isinstance(tool_client, McpToolClient):
            return tool_client.ping()
        return None

    def health_check(self) -> Dict[str, Any]:
        """Parser smoke test plus configuration capabilities."""
        try:
            start = time.perf_counter()
            parsed = self.parser.parse(HEALTH_CHECK_QUERY)
            return {
                "status": "healthy",
                "details": {
                    "query_parsing_working": parsed.confidence > 0.5,
                    "processing_time_ms": round((time.perf_counter() - start) * 1000, 2),
                    "understanding_provider_configured": self.parser.provider is not None,
                    "synthesis_provider_configured": self.synthesizer.provider is not None,
                    "tool_routing_enabled": self.alternate is not None,
                    "tool_server_reachable": self._tool_server_reachable(),
                    "deadline_seconds": self.config.deadline_seconds,
                },
            }
        except Exception as e:
            return {"status": "unhealthy", "details": {"error": str(e)}}


# =============================================================================
# Convenience
# =============================================================================

_default_orchestrator: Optional[Orchestrator] = None
_default_lock = threading.Lock()


def process(text: str, deadline_seconds: Optional[float] = None) -> UniversalAnswer:
    """Answer a question with an orchestrator built from the environment."""
    global _default_orchestrator
    with _default_lock:
        if _default_orchestrator is None:
            _default_orchestrator = Orchestrator.from_config()
    return _default_orchestrator.process(text, deadline_seconds=deadline_seconds)
