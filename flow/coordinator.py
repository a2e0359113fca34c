"""
Flow coordinator - drives one conversation turn end to end.

A turn is an explicit state machine:

    idle -> streaming -> completed | error
    streaming -> delegated_swarm -> follow_up -> completed

Every "read next event" from a provider is raced against a watchdog timer.
Before the first event the short cold-start budget applies, afterwards the
long inactivity budget. The two failure modes stay distinct
(NoEventsError vs StreamStalledError) so diagnostics can tell a provider
that never answered from one that stopped answering.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from config import flow_config
from provider_service import Provider, ProviderError, StreamEvent, WorkspaceContext

from .events import SWARM_CONTROL_EVENT, FlowEvent, NormalizedEventEnvelope
from .normalizer import normalize_envelope
from .observable import Observable

logger = logging.getLogger(__name__)

FOLLOW_UP_TEMPLATE = (
    "Richiesta originale: {original_prompt}\n\n"
    "Hai delegato allo swarm: {task}\n\n"
    "Risultato swarm:\n{swarm_text}\n\n"
    "Integra quanto fatto nel contesto della conversazione e prosegui."
)

OnEvent = Callable[[FlowEvent], Awaitable[None]]


class FlowState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    DELEGATED_SWARM = "delegated_swarm"
    FOLLOW_UP = "follow_up"
    COMPLETED = "completed"
    ERROR = "error"
    INTERRUPTED = "interrupted"


TERMINAL_STATES = {FlowState.COMPLETED, FlowState.ERROR, FlowState.INTERRUPTED}


# ============================================================
# Watchdog errors
# ============================================================

class StreamWatchdogError(ProviderError):
    """The watchdog timer won the race against the next stream read."""

    def __init__(self, message: str, timeout: float, partial_text: str = ""):
        super().__init__(message, partial_text=partial_text)
        self.timeout = timeout


class NoEventsError(StreamWatchdogError):
    def __init__(self, timeout: float, partial_text: str = ""):
        super().__init__(
            f"Nessun evento ricevuto dal provider entro {timeout:g}s.", timeout, partial_text
        )


class StreamStalledError(StreamWatchdogError):
    def __init__(self, timeout: float, partial_text: str = ""):
        super().__init__(
            f"Stream bloccato: nessun aggiornamento da {timeout:g}s.", timeout, partial_text
        )


_END_OF_STREAM = object()


async def _read_next(iterator: AsyncIterator[StreamEvent]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


async def next_event_within(
    iterator: AsyncIterator[StreamEvent],
    timeout: float,
    received_any: bool,
) -> Optional[StreamEvent]:
    """
    Race the next read of ``iterator`` against a ``timeout`` second timer.

    Returns the event, or None at end of stream. The loser is cancelled.
    Raises NoEventsError when nothing had been received yet, otherwise
    StreamStalledError.
    """
    read = asyncio.ensure_future(_read_next(iterator))
    timer = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait({read, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        pending = [task for task in (read, timer) if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            # Let the cancelled read unwind the provider generator before it is closed
            await asyncio.gather(*pending, return_exceptions=True)

    # A read that finished in the same tick as the timer still wins
    if read in done:
        value = read.result()
        return None if value is _END_OF_STREAM else value

    if received_any:
        raise StreamStalledError(timeout)
    raise NoEventsError(timeout)


# ============================================================
# Results
# ============================================================

@dataclass
class StreamResult:
    full_text: str
    pending_swarm_task: Optional[str] = None


@dataclass
class DelegationResult:
    swarm_text: str = ""
    follow_up_text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ============================================================
# Coordinator
# ============================================================

class FlowCoordinator:
    """
    Runs primary, swarm and follow-up sub-turns strictly in sequence and
    publishes its state through an Observable.

    Raw events are normalized into envelopes and handed to ``pipeline``
    (anything with ``record_envelope`` / ``record_error``) when one is given.
    """

    def __init__(
        self,
        first_event_timeout: Optional[float] = None,
        inactivity_timeout: Optional[float] = None,
        pipeline: Any = None,
    ):
        self.first_event_timeout = (
            flow_config.first_event_timeout if first_event_timeout is None else first_event_timeout
        )
        self.inactivity_timeout = (
            flow_config.inactivity_timeout if inactivity_timeout is None else inactivity_timeout
        )
        self.pipeline = pipeline
        self.state: Observable[FlowState] = Observable(FlowState.IDLE)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    @property
    def current_state(self) -> FlowState:
        return self.state.value

    def _transition(self, new_state: FlowState):
        old = self.state.value
        if old != new_state:
            logger.info(f"Flow state: {old.value} -> {new_state.value}")
        self.state.set(new_state)

    def start_streaming(self):
        self._transition(FlowState.STREAMING)

    def mark_delegated_swarm(self):
        self._transition(FlowState.DELEGATED_SWARM)

    def mark_follow_up(self):
        self._transition(FlowState.FOLLOW_UP)

    def _settle(self, outcome: FlowState):
        if self.state.value == FlowState.INTERRUPTED:
            logger.debug(f"Flow already interrupted, ignoring {outcome.value}")
            return
        self._transition(outcome)

    def finish(self):
        self._settle(FlowState.COMPLETED)

    def fail(self):
        self._settle(FlowState.ERROR)

    def interrupt(self):
        """Caller-driven stop. The caller must also abandon the underlying stream."""
        if self.state.value in TERMINAL_STATES:
            return
        self._transition(FlowState.INTERRUPTED)

    def reset(self):
        self._transition(FlowState.IDLE)

    def normalize_raw_event(
        self,
        provider_id: str,
        type: str,
        payload: Dict[str, str],
        timestamp: Optional[float] = None,
    ) -> NormalizedEventEnvelope:
        return normalize_envelope(provider_id, type, payload, timestamp)

    # ------------------------------------------------------------------
    # Stream draining
    # ------------------------------------------------------------------

    async def _emit(self, on_event: Optional[OnEvent], event: FlowEvent):
        if on_event is not None:
            await on_event(event)

    async def _forward_raw(self, provider_id: str, ev: StreamEvent, on_event: Optional[OnEvent]):
        envelope = self.normalize_raw_event(provider_id, ev.type, ev.payload, time.time())
        if self.pipeline is not None:
            self.pipeline.record_envelope(envelope)
        await self._emit(on_event, FlowEvent(
            type="raw",
            content=ev.type,
            data={"provider_id": provider_id, "payload": dict(ev.payload), "envelope": envelope},
        ))

    async def _drain(
        self,
        provider: Provider,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]],
        text_event_type: str,
        on_event: Optional[OnEvent],
        intercept_swarm: bool = False,
    ) -> StreamResult:
        """Read a provider stream to its end under the watchdog."""
        result = StreamResult(full_text="")
        try:
            stream = await provider.send(prompt, context, images)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(str(e)) from e
        received_any = False

        try:
            while True:
                timeout = self.inactivity_timeout if received_any else self.first_event_timeout
                try:
                    ev = await next_event_within(stream, timeout, received_any)
                except StreamWatchdogError as e:
                    e.partial_text = result.full_text
                    logger.warning(f"Watchdog fired for {provider.id}: {e}")
                    raise
                if ev is None:
                    break
                received_any = True

                if ev.is_text:
                    result.full_text += ev.text
                    await self._emit(on_event, FlowEvent(
                        type=text_event_type, content=result.full_text, data={"delta": ev.text}
                    ))
                elif ev.is_error:
                    result.full_text += f"\n\n[Errore: {ev.text}]"
                    self._record_error(provider.id, ev.text)
                    await self._emit(on_event, FlowEvent(type="error", content=result.full_text))
                elif ev.is_raw and ev.type == SWARM_CONTROL_EVENT:
                    task = (ev.payload.get("task") or "").strip()
                    if intercept_swarm and task:
                        # Deferred: the rest of the stream is still drained first
                        result.pending_swarm_task = task
                        logger.info(f"Swarm delegation requested by {provider.id}: {task[:80]}")
                        await self._emit(on_event, FlowEvent(
                            type="swarm_delegation", content=task, data={"provider_id": provider.id}
                        ))
                    else:
                        logger.debug(f"Dropping swarm request from {provider.id} outside the primary turn")
                elif ev.is_raw:
                    await self._forward_raw(provider.id, ev, on_event)
        except ProviderError as e:
            if not e.partial_text:
                e.partial_text = result.full_text
            raise
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ProviderError(str(e), partial_text=result.full_text) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"Closing stream from {provider.id} failed: {e}")

        return result

    def _record_error(self, provider_id: str, message: str):
        if self.pipeline is not None:
            self.pipeline.record_error(provider_id, message)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def run_stream(
        self,
        provider: Provider,
        prompt: str,
        context: WorkspaceContext,
        images: Optional[List[str]] = None,
        on_event: Optional[OnEvent] = None,
    ) -> StreamResult:
        """
        Run the primary sub-turn. Returns the accumulated text and the swarm
        task requested in-band, if any.

        Failures append the inline error marker to the partial text, report
        an ``error`` event, move the state to ``error`` and re-raise a
        ProviderError whose ``partial_text`` carries the output so far.
        """
        self.start_streaming()
        try:
            result = await self._drain(
                provider, prompt, context, images, "text", on_event, intercept_swarm=True
            )
        except ProviderError as e:
            marker = f"\n\n[Errore: {e}]"
            # The provider may already have reported the same error in-band
            if not e.partial_text.endswith(marker):
                e.partial_text = f"{e.partial_text}{marker}"
                self._record_error(provider.id, str(e))
            logger.error(f"Stream from {provider.id} failed: {e}")
            self.fail()
            await self._emit(on_event, FlowEvent(type="error", content=e.partial_text))
            raise

        self.finish()
        return result

    async def run_delegated_swarm(
        self,
        task: str,
        swarm_provider: Provider,
        context: WorkspaceContext,
        follow_up_provider: Optional[Provider] = None,
        original_prompt: str = "",
        images: Optional[List[str]] = None,
        on_event: Optional[OnEvent] = None,
    ) -> DelegationResult:
        """
        Run the swarm sub-turn and, when a follow-up provider is given, the
        follow-up sub-turn built from the swarm's full output. Never raises.
        """
        outcome = DelegationResult()
        self.mark_delegated_swarm()
        try:
            swarm = await self._drain(swarm_provider, task, context, images, "swarm_text", on_event)
            outcome.swarm_text = swarm.full_text

            if follow_up_provider is None:
                self.finish()
                return outcome

            self.mark_follow_up()
            prompt = build_follow_up_prompt(original_prompt, task, swarm.full_text)
            follow = await self._drain(follow_up_provider, prompt, context, None, "follow_up_text", on_event)
            outcome.follow_up_text = follow.full_text
            self.finish()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = f"[Errore swarm/follow-up: {e}]"
            logger.error(message)
            in_follow_up = self.state.value == FlowState.FOLLOW_UP
            if isinstance(e, ProviderError) and e.partial_text:
                if in_follow_up:
                    outcome.follow_up_text = e.partial_text
                else:
                    outcome.swarm_text = e.partial_text
            outcome.error = message
            failed_provider = follow_up_provider if in_follow_up else swarm_provider
            self._record_error(failed_provider.id, str(e))
            self.fail()
            await self._emit(on_event, FlowEvent(type="error", content=message))
        return outcome


def build_follow_up_prompt(original_prompt: str, task: str, swarm_text: str) -> str:
    return FOLLOW_UP_TEMPLATE.format(original_prompt=original_prompt, task=task, swarm_text=swarm_text)
