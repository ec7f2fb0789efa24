"""
Streaming response coordinator.

A producer task runs retrieval and generation and pushes events onto a
bounded queue; the consumer side (``stream``) validates ordering and yields
them. Cancelling the token, or closing the consumer, cancels the producer and
with it the in-flight generation call.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from src.providers.generation import GenerationProvider
from src.query.hybrid_retrieval import (
    HybridRetrievalOrchestrator,
    RetrievalRequest,
    RetrievalResponse,
)
from src.query.response_builder import ResponseBuilder, build_citations
from src.shared.errors import (
    GenerationError,
    InsufficientEvidence,
    RetrievalCoreError,
    StageTimeout,
    UpstreamUnavailable,
)
from src.shared.filters import SearchFilter, UserContext
from src.shared.observability import LoggerAdapter, bind_request_context, get_logger
from src.shared.observability.metrics import stream_events_total
from src.shared.resilience import execute_with_timeout
from src.streaming import events
from src.streaming.events import StreamEvent, StreamStateMachine

logger = get_logger(__name__)

INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

# Client-facing messages; internal details stay in the logs
GENERIC_MESSAGES = {
    "RETRIEVAL_FAILED": "Search is temporarily unavailable. Please try again.",
    "REQUEST_TIMEOUT": "The request took too long to complete. Please try again.",
    "GENERATION_FAILED": "Unable to generate an answer right now. Please try again.",
}
DEFAULT_MESSAGE = "An unexpected error occurred."

Emit = Callable[[StreamEvent], Awaitable[None]]


def generic_message(code: str) -> str:
    return GENERIC_MESSAGES.get(code, DEFAULT_MESSAGE)


class CancellationToken:
    """Cooperative cancellation signal shared between a client and a stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class ErrorResponse:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class StreamingCoordinator:
    def __init__(
        self,
        orchestrator: HybridRetrievalOrchestrator,
        generator: GenerationProvider,
        queue_size: int = 64,
    ):
        self.orchestrator = orchestrator
        self.generator = generator
        self.queue_size = queue_size

    def _llm_timeout_ms(self, user_context: UserContext) -> float:
        return self.orchestrator.timeout_manager.get_timeout_config(
            user_context.tenant_id
        ).llm

    def _refusal_payload(self, retrieval: RetrievalResponse) -> Dict[str, Any]:
        decision = retrieval.guardrail_decision
        return (
            ResponseBuilder()
            .answer(decision.idk_response.message if decision.idk_response else "")
            .retrieved_documents([])
            .guardrail_decision(decision)
            .metrics(retrieval.metrics.to_dict())
            .build()
            .to_dict()
        )

    def _answer_payload(self, retrieval: RetrievalResponse, answer: str) -> Dict[str, Any]:
        return (
            ResponseBuilder()
            .answer(answer)
            .retrieved_documents(retrieval.results)
            .guardrail_decision(retrieval.guardrail_decision)
            .citations(build_citations(retrieval.results))
            .metrics(retrieval.metrics.to_dict())
            .build()
            .to_dict()
        )

    async def _generate(
        self,
        retrieval: RetrievalResponse,
        query: str,
        user_context: UserContext,
        emit: Optional[Emit] = None,
    ) -> str:
        """
        Stream answer text from the generator under the LLM budget.

        Raises:
            GenerationError: On timeout or generator failure
        """

        async def _run() -> str:
            parts = []
            stream = self.generator.generate_streaming(retrieval.packed_context, query)
            try:
                async for text in stream:
                    parts.append(text)
                    if emit is not None:
                        await emit(events.chunk(text, "".join(parts)))
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
            return "".join(parts)

        try:
            return await execute_with_timeout(
                _run, self._llm_timeout_ms(user_context), "llm"
            )
        except StageTimeout as exc:
            raise GenerationError(exc) from exc
        except RetrievalCoreError as exc:
            raise GenerationError(exc) from exc
        except Exception as exc:
            raise GenerationError(UpstreamUnavailable("llm", exc)) from exc

    async def _produce(
        self,
        request: RetrievalRequest,
        user_context: UserContext,
        search_filter: SearchFilter,
        query_id: str,
        emit: Emit,
    ) -> None:
        log = LoggerAdapter(logger, query_id=query_id)
        await emit(events.connection_opened(query_id))
        try:
            retrieval = await self.orchestrator.retrieve(
                request, user_context, search_filter
            )
            if not retrieval.is_answerable:
                log.info(
                    "stream_refused",
                    reason_code=retrieval.guardrail_decision.idk_response.reason_code
                    if retrieval.guardrail_decision.idk_response
                    else None,
                )
                await emit(events.response_completed(self._refusal_payload(retrieval)))
            else:
                answer = await self._generate(
                    retrieval, request.query, user_context, emit
                )
                await emit(events.citations(build_citations(retrieval.results)))
                await emit(
                    events.metadata(
                        {
                            "model": self.generator.model_id,
                            "intent": retrieval.intent.intent.value,
                            "fusion_strategy": retrieval.intent.fusion_strategy,
                            "confidence": retrieval.guardrail_decision.score.confidence,
                        }
                    )
                )
                await emit(
                    events.response_completed(self._answer_payload(retrieval, answer))
                )
        except RetrievalCoreError as exc:
            log.error("stream_failed", code=exc.code, error=exc.message)
            await emit(events.error(exc.code, generic_message(exc.code)))
        except Exception as exc:
            log.error("stream_failed", code=INTERNAL_ERROR_CODE, error=str(exc))
            await emit(events.error(INTERNAL_ERROR_CODE, DEFAULT_MESSAGE))
        await emit(events.done(query_id))

    async def stream(
        self,
        request: RetrievalRequest,
        user_context: UserContext,
        search_filter: SearchFilter,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Yield the ordered events for one request.

        Exactly one ``done`` ends every stream that is not cancelled. After
        cancellation nothing further is yielded.
        """
        query_id = bind_request_context(request.request_id, user_context.tenant_id)
        queue: "asyncio.Queue[StreamEvent]" = asyncio.Queue(maxsize=self.queue_size)
        machine = StreamStateMachine()

        producer = asyncio.create_task(
            self._produce(request, user_context, search_filter, query_id, queue.put)
        )
        cancel_waiter = (
            asyncio.create_task(cancel_token.wait()) if cancel_token is not None else None
        )

        try:
            while not machine.terminated:
                getter = asyncio.ensure_future(queue.get())
                waiters = {getter}
                if cancel_waiter is not None:
                    waiters.add(cancel_waiter)
                finished, _ = await asyncio.wait(
                    waiters, return_when=asyncio.FIRST_COMPLETED
                )
                if cancel_waiter is not None and cancel_waiter in finished:
                    getter.cancel()
                    logger.info("stream_cancelled", query_id=query_id)
                    return

                event = getter.result()
                machine.advance(event)
                stream_events_total.labels(type=event.type).inc()
                yield event
        finally:
            producer.cancel()
            if cancel_waiter is not None:
                cancel_waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await producer

    async def answer(
        self,
        request: RetrievalRequest,
        user_context: UserContext,
        search_filter: SearchFilter,
        raise_on_refusal: bool = False,
    ) -> Union[Dict[str, Any], ErrorResponse]:
        """
        Non-streaming variant.

        Returns:
            The ``response_completed`` payload, or an ErrorResponse

        Raises:
            InsufficientEvidence: On refusal, when ``raise_on_refusal`` is set
        """
        bind_request_context(request.request_id, user_context.tenant_id)
        try:
            retrieval = await self.orchestrator.retrieve(
                request, user_context, search_filter
            )
            if not retrieval.is_answerable:
                if raise_on_refusal:
                    raise InsufficientEvidence(retrieval.guardrail_decision)
                return self._refusal_payload(retrieval)
            answer = await self._generate(retrieval, request.query, user_context)
            return self._answer_payload(retrieval, answer)
        except InsufficientEvidence:
            raise
        except RetrievalCoreError as exc:
            logger.error("answer_failed", code=exc.code, error=exc.message)
            return ErrorResponse(code=exc.code, message=generic_message(exc.code))
        except Exception as exc:
            logger.error(
                "answer_failed", code=INTERNAL_ERROR_CODE, error=str(exc), exc_info=True
            )
            return ErrorResponse(code=INTERNAL_ERROR_CODE, message=DEFAULT_MESSAGE)
