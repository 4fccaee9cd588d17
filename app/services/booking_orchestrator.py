"""
Booking orchestrator - runs one step of the SMS booking conversation per inbound message.

Per message:
1. Load (or create) the session and count the message; terminal sessions stay silent
2. Loop guard: once the message allowance is used up, hand off regardless of state
3. Opt-out keywords win over everything else
4. Mid-flow states (slot number, name, address, yes/no) read the reply against the
   expected shape first; the classifier is the fallback
5. Otherwise classify, merge extracted fields and dispatch on intent

Every state change goes through state_machine.transition (committed, one event each).
CRM failures hand off with NEEDS_HUMAN; unexpected exceptions end in ERROR with a
generic reply. The caller serializes messages per conversation.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.constants.event_types import (
    EVENT_CRM_REQUEST_FAILED,
    EVENT_LOOP_GUARD_TRIPPED,
    EVENT_NO_AVAILABILITY,
    EVENT_UNHANDLED_EXCEPTION,
)
from app.constants.statuses import (
    EXIT_INTENTS,
    MID_FLOW_STATES,
    Intent,
    MatchedBy,
    SessionOutcome,
    SessionState,
)
from app.db.models import AgentConfig, AgentSession, Contact, Conversation, Tenant
from app.services import session_manager
from app.services.conversation_summary import load_history
from app.services.handoff_service import HandoffSink, handoff
from app.services.identity_resolver import IdentityMatch, pick_location, resolve
from app.services.intent.classifier import Classification, IntentClassifier
from app.services.intent.heuristic_classifier import HeuristicIntentClassifier
from app.services.integrations.crm_client import AvailabilitySlot, CrmError, FieldServiceCrmClient
from app.services.messaging.response_generator import (
    ResponseGenerator,
    ResponseInstruction,
    format_slots_for_sms,
)
from app.services.parsing.address_parsing import extract_street_address, looks_like_address, parse_address
from app.services.parsing.reply_parsing import extract_name, is_stop_keyword, parse_yes_no
from app.services.parsing.slot_parsing import is_numeric_attempt, parse_slot_selection
from app.services.parsing.text_normalization import normalize_text
from app.services.session_manager import SessionBackingDataMissing
from app.services.state_machine import is_terminal_state, transition
from app.services.system_event_service import error, warn

logger = logging.getLogger(__name__)

MAX_SLOTS_OFFERED = 3
GENERIC_ERROR_REPLY = "Thanks for your message! A team member will reach out to you shortly."

# Qualification score weights
SCORE_ADDRESS = 30
SCORE_NAME = 20
SCORE_BOOK_YES = 30
SCORE_INTERESTED = 15
SCORE_IDENTITY_FOUND = 10

# Steps that only exist while a CRM call is in flight; finding a session parked
# here means a previous attempt died mid-call
INTERRUPTED_STATES = {SessionState.CREATING_ST_CUSTOMER, SessionState.BOOKING_JOB}

# Keyword check run on name-shaped replies before they are accepted as a name
_EXIT_CHECK = HeuristicIntentClassifier()

INSTRUCTIONS = {
    "ask_address": "Customer wants to book. Ask for their service address in a friendly way.",
    "address_reprompt": "We couldn't read the address. Ask for the full service address (street, city, zip).",
    "ask_name": "Ask for the customer's full name so we can put the appointment under it.",
    "name_reprompt": "We couldn't read the name. Ask for just their first and last name.",
    "confirm_identity": "Ask the customer to confirm they are {candidate_name}. They should reply YES or NO.",
    "confirm_address": "Ask the customer to confirm the service address is {candidate_address}. YES or NO.",
    "confirm_reprompt": "Ask the customer to reply yes or no.",
    "propose_times": (
        "Tell the customer we have openings and ask them to reply with the number of the time "
        "that works best. Do not list the times, they are added after your message."
    ),
    "slot_reprompt": "Ask the customer to reply with a number from 1 to {slot_count}.",
    "booking_confirmed": "The appointment is booked for {slot_text}. Confirm it warmly and briefly.",
    "warm_handoff": (
        "Customer is interested but we need to connect them with our team. Let them know someone "
        "will reach out shortly to finalize their appointment. Be warm and appreciative."
    ),
    "handoff_generic": "Let the customer know a team member will follow up shortly.",
    "not_interested_ack": "Customer declined. Send a brief, polite acknowledgment thanking them for their time.",
    "not_now_ack": "Customer wants to delay. Acknowledge politely and let them know they can reply anytime when ready.",
    "info_answer": (
        'Customer asked a question: "{question}". Answer helpfully and briefly, '
        "then gently ask if they'd like to schedule."
    ),
    "unclear_prompt": (
        "Customer response was unclear. Ask a simple yes/no question about whether they want "
        "to schedule an appointment."
    ),
    "wrong_number": "Apologize for texting the wrong number.",
}

# Copy that must go out exactly as written
FIXED_KEYS = {"confirm_reprompt", "slot_reprompt", "handoff_generic", "wrong_number"}


@dataclass
class InboundResult:
    """Response directive returned to the transport."""

    should_respond: bool
    response_text: str | None
    new_state: str
    outcome: str | None = None
    external_ids: dict[str, str] = field(default_factory=dict)


@dataclass
class TurnContext:
    session: AgentSession
    config: AgentConfig
    tenant: Tenant
    contact: Contact
    message: str
    history: list[dict[str, str]]


def compute_qualification_score(session: AgentSession, identity_found: bool) -> int:
    """Lead score: address +30, name +20, booking intent +30 (interest +15), CRM match +10."""
    score = 0
    if session.confirmed_address or session.crm_location_id:
        score += SCORE_ADDRESS
    if session.confirmed_name or session.crm_customer_id:
        score += SCORE_NAME
    if session.booking_intent == Intent.BOOK_YES:
        score += SCORE_BOOK_YES
    elif session.booking_intent == Intent.INTERESTED:
        score += SCORE_INTERESTED
    if identity_found:
        score += SCORE_IDENTITY_FOUND
    return score


def external_ids(session: AgentSession) -> dict[str, str]:
    ids = {
        "customer_id": session.crm_customer_id,
        "location_id": session.crm_location_id,
        "job_id": session.crm_job_id,
        "appointment_id": session.crm_appointment_id,
        "booking_id": session.crm_booking_id,
    }
    return {k: v for k, v in ids.items() if v}


class BookingOrchestrator:
    """One conversation step per inbound SMS, with injected collaborators."""

    def __init__(
        self,
        db: Session,
        classifier: IntentClassifier,
        generator: ResponseGenerator,
        crm: FieldServiceCrmClient,
        handoff_sink: HandoffSink | None = None,
    ):
        self.db = db
        self.classifier = classifier
        self.generator = generator
        self.crm = crm
        # The CRM booking API is the default place handoff records go
        self.handoff_sink = handoff_sink if handoff_sink is not None else crm

    # ---- entrypoint ----

    async def handle_inbound_message(
        self,
        conversation_id: int,
        tenant_id: int,
        contact_id: int,
        message_body: str,
        message_id: str | None = None,
        offer_context_id: int | None = None,
    ) -> InboundResult | None:
        """
        Process one inbound SMS.

        `offer_context_id` is only used when the session is created.

        Returns:
            InboundResult directive, or None when automation is disabled for the
            tenant or the conversation
        """
        config = self.db.execute(
            select(AgentConfig).where(AgentConfig.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if config is None or not config.enabled or not config.auto_respond:
            return None
        conversation = self.db.get(Conversation, conversation_id)
        if conversation is not None and not conversation.ai_enabled:
            return None

        session: AgentSession | None = None
        try:
            session = session_manager.load_or_create(
                self.db, conversation_id, tenant_id, contact_id, offer_context_id=offer_context_id,
            )
            return await self._process(session, config, message_body or "", message_id)
        except SessionBackingDataMissing as exc:
            self.db.rollback()
            return self._backing_data_missing(exc)
        except Exception as exc:
            self.db.rollback()
            logger.exception(f"Unhandled error processing conversation {conversation_id}")
            return await self._fail_to_error(session, exc, message_body)

    async def _process(
        self,
        session: AgentSession,
        config: AgentConfig,
        message: str,
        message_id: str | None,
    ) -> InboundResult:
        session_manager.record_inbound(self.db, session, message_id)

        if is_terminal_state(session.state):
            logger.info(f"Session {session.id} is {session.state}; staying silent until reset")
            return self._result(session, None)

        ctx = TurnContext(
            session=session,
            config=config,
            tenant=session.tenant,
            contact=session.contact,
            message=normalize_text(message),
            history=load_history(self.db, session.conversation_id),
        )

        if session_manager.is_loop_guard_tripped(session, config):
            warn(
                self.db,
                EVENT_LOOP_GUARD_TRIPPED,
                session_id=session.id,
                payload={"message_count": session.message_count, "cap": config.max_messages_per_session},
            )
            return await self._handoff(ctx, "Max messages reached")

        if is_stop_keyword(ctx.message):
            return self._opt_out(ctx, confidence=1.0)

        try:
            return await self._step(ctx)
        except CrmError as exc:
            warn(
                self.db,
                EVENT_CRM_REQUEST_FAILED,
                session_id=ctx.session.id,
                payload={"operation": exc.operation, "status_code": exc.status_code, "state": ctx.session.state},
                exc=exc,
            )
            return await self._handoff(ctx, f"CRM request failed ({exc.operation or 'unknown'})")

    async def _step(self, ctx: TurnContext) -> InboundResult:
        state = SessionState(ctx.session.state)

        if state in MID_FLOW_STATES:
            result = await self._handle_expected_reply(ctx, state)
            if result is not None:
                return result
            classification = await self._classify(ctx)
            return await self._mid_flow_fallback(ctx, state, classification)

        if state in INTERRUPTED_STATES:
            return await self._handoff(ctx, f"Interrupted during {state.value}")

        classification = await self._classify(ctx)
        return await self._dispatch(ctx, classification)

    # ---- classification ----

    async def _classify(self, ctx: TurnContext) -> Classification:
        classification = await self.classifier.classify(
            ctx.message, ctx.history, ctx.session.offer_context,
        )
        logger.info(
            f"Session {ctx.session.id}: intent={classification.intent} "
            f"confidence={classification.confidence} source={classification.source}"
        )
        session_manager.update(
            self.db,
            ctx.session,
            last_intent=classification.intent.value,
            last_intent_confidence=classification.confidence,
        )
        session_manager.merge_extracted_fields(self.db, ctx.session, classification.extracted_data)
        return classification

    async def _dispatch(self, ctx: TurnContext, classification: Classification) -> InboundResult:
        intent = classification.intent

        if intent == Intent.OPT_OUT:
            return self._opt_out(ctx, confidence=classification.confidence)
        if intent == Intent.NOT_INTERESTED:
            return await self._complete(ctx, "not_interested_ack", "Customer declined")
        if intent == Intent.NOT_NOW:
            return await self._complete(ctx, "not_now_ack", "Customer wants to wait")
        if intent == Intent.WRONG_NUMBER:
            return await self._complete(ctx, "wrong_number", "Wrong number")
        if intent == Intent.RESCHEDULE:
            return await self._handoff(ctx, "Customer wants to reschedule")
        if intent == Intent.CALL_ME:
            return await self._handoff(ctx, "Customer asked for a call")
        if intent in (Intent.BOOK_YES, Intent.INTERESTED, Intent.CONFIRM_YES):
            strength = Intent.INTERESTED if intent == Intent.INTERESTED else Intent.BOOK_YES
            if ctx.session.booking_intent != Intent.BOOK_YES:
                session_manager.update(self.db, ctx.session, booking_intent=strength.value)
            return await self._start_booking(ctx)
        if intent == Intent.INFO_REQUEST:
            self._ensure_qualifying(ctx)
            question = classification.extracted_data.get("question") or ctx.message
            return await self._reply(ctx, "info_answer", question=question)

        # UNCLEAR, or a confirmation with nothing pending
        self._ensure_qualifying(ctx)
        return await self._reply(ctx, "unclear_prompt")

    # ---- mid-flow replies ----

    async def _handle_expected_reply(self, ctx: TurnContext, state: SessionState) -> InboundResult | None:
        """Interpret the raw reply for the state's expected shape; None if it doesn't fit."""
        if state == SessionState.PROPOSING_TIMES:
            slots = ctx.session.available_slots or []
            index, meta = parse_slot_selection(ctx.message, len(slots))
            if index is not None:
                return await self._book_slot(ctx, index)
            if is_numeric_attempt(meta):
                logger.info(f"Session {ctx.session.id}: slot reply rejected ({meta})")
                return await self._reply(ctx, "slot_reprompt", slot_count=len(slots))
            return None

        if state == SessionState.COLLECTING_ADDRESS:
            if looks_like_address(ctx.message):
                address = extract_street_address(ctx.message) or ctx.message
                return await self._address_received(ctx, address)
            return None

        if state == SessionState.AWAITING_NAME:
            name = extract_name(ctx.message)
            # "not interested" or "reschedule please" fit the name shape; the classifier takes those
            if name and _EXIT_CHECK.classify_sync(ctx.message).intent not in EXIT_INTENTS:
                session_manager.update(self.db, ctx.session, confirmed_name=name)
                return await self._run_matching(ctx)
            return None

        # AWAITING_IDENTITY_CONFIRM / AWAITING_ADDRESS_CONFIRM
        answer = parse_yes_no(ctx.message)
        if answer is None:
            return None
        return await self._confirm_answer(ctx, state, answer)

    async def _mid_flow_fallback(
        self, ctx: TurnContext, state: SessionState, classification: Classification
    ) -> InboundResult:
        intent = classification.intent
        if intent in EXIT_INTENTS:
            return await self._dispatch(ctx, classification)

        if state in (SessionState.AWAITING_IDENTITY_CONFIRM, SessionState.AWAITING_ADDRESS_CONFIRM):
            if intent in (Intent.CONFIRM_YES, Intent.CONFIRM_NO):
                return await self._confirm_answer(ctx, state, intent == Intent.CONFIRM_YES)
            return await self._reply(ctx, "confirm_reprompt")

        if state == SessionState.COLLECTING_ADDRESS:
            address = classification.extracted_data.get("address")
            if address:
                return await self._address_received(ctx, address)
            return await self._reply(ctx, "address_reprompt")

        if state == SessionState.AWAITING_NAME:
            if classification.extracted_data.get("name"):
                return await self._run_matching(ctx)
            return await self._reply(ctx, "name_reprompt")

        # PROPOSING_TIMES
        return await self._reply(ctx, "slot_reprompt", slot_count=len(ctx.session.available_slots or []))

    async def _address_received(self, ctx: TurnContext, address: str) -> InboundResult:
        session_manager.update(self.db, ctx.session, confirmed_address=address)
        return await self._run_matching(ctx)

    async def _confirm_answer(self, ctx: TurnContext, state: SessionState, confirmed: bool) -> InboundResult:
        session = ctx.session
        if confirmed:
            session_manager.update(
                self.db,
                session,
                crm_customer_id=session.pending_match_customer_id,
                crm_location_id=session.pending_match_location_id or session.crm_location_id,
                confirmed_name=session.confirmed_name or session.pending_match_name,
            )
            if state == SessionState.AWAITING_ADDRESS_CONFIRM and session.pending_match_address:
                session_manager.update(self.db, session, confirmed_address=session.pending_match_address)
            self._clear_pending(ctx)
            return await self._after_identity(ctx)

        rejected = list(session.rejected_customer_ids or [])
        if session.pending_match_customer_id and session.pending_match_customer_id not in rejected:
            rejected.append(session.pending_match_customer_id)
        session_manager.update(self.db, session, rejected_customer_ids=rejected)
        self._clear_pending(ctx)
        if state == SessionState.AWAITING_ADDRESS_CONFIRM:
            session_manager.update(self.db, session, confirmed_address=None)
        ctx.session = transition(
            self.db, ctx.session, SessionState.COLLECTING_ADDRESS, reason="Customer declined match",
        )
        return await self._reply(ctx, "ask_address")

    def _clear_pending(self, ctx: TurnContext) -> None:
        session_manager.update(
            self.db,
            ctx.session,
            pending_match_customer_id=None,
            pending_match_location_id=None,
            pending_match_name=None,
            pending_match_address=None,
            pending_match_by=None,
        )

    # ---- booking sub-flow ----

    def _ensure_qualifying(self, ctx: TurnContext) -> None:
        if ctx.session.state == SessionState.INBOUND_RECEIVED:
            ctx.session = transition(self.db, ctx.session, SessionState.QUALIFYING, reason="First reply")

    async def _start_booking(self, ctx: TurnContext) -> InboundResult:
        self._ensure_qualifying(ctx)
        return await self._run_matching(ctx)

    async def _run_matching(self, ctx: TurnContext) -> InboundResult:
        """Resolve identity, then ask for what is missing or move on to slots."""
        if ctx.session.state != SessionState.MATCHING_ST_RECORDS:
            ctx.session = transition(self.db, ctx.session, SessionState.MATCHING_ST_RECORDS, reason="Booking intent")

        # A confirmed identity is never re-resolved
        if ctx.session.crm_customer_id:
            return await self._after_identity(ctx)

        resolution = await resolve(self.crm, ctx.session, ctx.contact)

        if resolution.auto_acceptable:
            match = resolution.matches[0]
            session_manager.update(
                self.db,
                ctx.session,
                crm_customer_id=match.customer_id,
                crm_location_id=match.location_id,
                confirmed_name=ctx.session.confirmed_name or match.display_name,
            )
            return await self._after_identity(ctx)

        if resolution.found:
            return await self._ask_confirmation(ctx, resolution.matches[0])

        session = ctx.session
        if not session.confirmed_address:
            ctx.session = transition(self.db, session, SessionState.COLLECTING_ADDRESS, reason="No match, need address")
            return await self._reply(ctx, "ask_address")
        if not session.confirmed_name:
            ctx.session = transition(self.db, session, SessionState.AWAITING_NAME, reason="No match, need name")
            return await self._reply(ctx, "ask_name")
        return await self._create_customer(ctx)

    async def _ask_confirmation(self, ctx: TurnContext, match: IdentityMatch) -> InboundResult:
        session_manager.update(
            self.db,
            ctx.session,
            pending_match_customer_id=match.customer_id,
            pending_match_location_id=match.location_id,
            pending_match_name=match.display_name,
            pending_match_address=match.address or None,
            pending_match_by=match.matched_by.value,
        )
        if match.matched_by == MatchedBy.ADDRESS:
            ctx.session = transition(
                self.db, ctx.session, SessionState.AWAITING_ADDRESS_CONFIRM, reason="Address match needs confirmation",
            )
            return await self._reply(ctx, "confirm_address", candidate_address=match.address)
        ctx.session = transition(
            self.db,
            ctx.session,
            SessionState.AWAITING_IDENTITY_CONFIRM,
            reason=f"{match.matched_by.value.capitalize()} match needs confirmation",
        )
        return await self._reply(ctx, "confirm_identity", candidate_name=match.display_name)

    async def _create_customer(self, ctx: TurnContext) -> InboundResult:
        ctx.session = transition(self.db, ctx.session, SessionState.CREATING_ST_CUSTOMER, reason="No CRM match")
        session = ctx.session
        created = await self.crm.create_customer(
            session.tenant_id,
            name=session.confirmed_name or ctx.contact.full_name or "Customer",
            phone=ctx.contact.phone,
            address=parse_address(session.confirmed_address),
            email=session.confirmed_email or ctx.contact.email,
        )
        session_manager.update(
            self.db,
            session,
            crm_customer_id=created.customer_id,
            crm_location_id=created.location_id,
        )
        return await self._after_identity(ctx, identity_found=False)

    async def _after_identity(self, ctx: TurnContext, identity_found: bool = True) -> InboundResult:
        """Customer known: settle the location, check qualification, propose times."""
        session = ctx.session
        if not session.crm_location_id:
            locations = await self.crm.get_customer_locations(session.tenant_id, session.crm_customer_id)
            location = pick_location(locations, session.confirmed_address)
            if location is not None:
                session_manager.update(self.db, session, crm_location_id=location.id)
            elif session.confirmed_address:
                location_id = await self.crm.create_location(
                    session.tenant_id,
                    session.crm_customer_id,
                    name=session.confirmed_name or ctx.contact.full_name or "Customer",
                    phone=ctx.contact.phone,
                    address=parse_address(session.confirmed_address),
                    email=session.confirmed_email or ctx.contact.email,
                )
                session_manager.update(self.db, session, crm_location_id=location_id)
            else:
                ctx.session = transition(
                    self.db, session, SessionState.COLLECTING_ADDRESS, reason="Location unknown",
                )
                return await self._reply(ctx, "ask_address")

        score = compute_qualification_score(session, identity_found)
        session_manager.update(self.db, session, qualification_score=score)
        config = ctx.config
        if score < config.qualification_threshold:
            return await self._warm_handoff(ctx, f"Qualification score {score} below {config.qualification_threshold}")
        if not config.default_job_type_id or not config.default_business_unit_id:
            return await self._warm_handoff(ctx, "Job type or business unit not configured")

        return await self._propose_times(ctx)

    async def _propose_times(self, ctx: TurnContext) -> InboundResult:
        config = ctx.config
        max_slots = max(1, min(config.max_slots_offered or MAX_SLOTS_OFFERED, MAX_SLOTS_OFFERED))
        slots = await self.crm.get_availability(
            ctx.session.tenant_id,
            business_unit_id=config.default_business_unit_id,
            max_slots=max_slots,
            days_ahead=config.availability_days_ahead,
        )
        slots = slots[:max_slots]
        if not slots:
            warn(self.db, EVENT_NO_AVAILABILITY, session_id=ctx.session.id, payload={"days_ahead": config.availability_days_ahead})
            return await self._handoff(ctx, "No availability")

        serialized = [slot.as_dict() for slot in slots]
        session_manager.update(self.db, ctx.session, available_slots=serialized, selected_slot_index=None)
        ctx.session = transition(
            self.db, ctx.session, SessionState.PROPOSING_TIMES, reason=f"{len(slots)} slots offered",
        )
        result = await self._reply(ctx, "propose_times")
        result.response_text = f"{result.response_text}\n{format_slots_for_sms(serialized, MAX_SLOTS_OFFERED)}"
        return result

    async def _book_slot(self, ctx: TurnContext, index: int) -> InboundResult:
        session_manager.update(self.db, ctx.session, selected_slot_index=index)
        ctx.session = transition(self.db, ctx.session, SessionState.BOOKING_JOB, reason=f"Slot {index} selected")
        session = ctx.session
        config = ctx.config

        if not config.default_job_type_id or not config.default_business_unit_id:
            return await self._handoff(ctx, "Job type or business unit not configured")
        if not session.crm_customer_id or not session.crm_location_id:
            return await self._handoff(ctx, "Customer or location id missing")

        slot = AvailabilitySlot.from_dict(session.available_slots[index - 1])
        offer = session.offer_context
        summary = f"SMS booking: {offer.offer_name if offer else 'Service visit'}"
        if session.preferred_time_slot:
            summary += f" (prefers {session.preferred_time_slot})"
        job = await self.crm.create_job(
            session.tenant_id,
            customer_id=session.crm_customer_id,
            location_id=session.crm_location_id,
            job_type_id=config.default_job_type_id,
            business_unit_id=config.default_business_unit_id,
            summary=summary,
            slot=slot,
            campaign_id=config.default_campaign_id,
        )
        session_manager.update(self.db, session, crm_job_id=job.job_id, crm_appointment_id=job.appointment_id)
        ctx.session = transition(
            self.db, session, SessionState.CONFIRMED, reason=f"Job {job.job_id} created",
            outcome=SessionOutcome.FULL_BOOKING,
        )
        return await self._reply(ctx, "booking_confirmed", slot_text=slot.display_text)

    # ---- endings ----

    def _opt_out(self, ctx: TurnContext, confidence: float) -> InboundResult:
        session_manager.update(
            self.db, ctx.session, last_intent=Intent.OPT_OUT.value, last_intent_confidence=confidence,
        )
        ctx.session = transition(
            self.db, ctx.session, SessionState.COMPLETED, reason="Opt-out", outcome=SessionOutcome.OPT_OUT,
        )
        return self._result(ctx.session, None)

    async def _complete(self, ctx: TurnContext, key: str, reason: str) -> InboundResult:
        ctx.session = transition(
            self.db, ctx.session, SessionState.COMPLETED, reason=reason, outcome=SessionOutcome.NOT_INTERESTED,
        )
        return await self._reply(ctx, key)

    async def _handoff(self, ctx: TurnContext, reason: str) -> InboundResult:
        ctx.session, _ = await handoff(
            self.db, ctx.session, reason, self.handoff_sink, last_inbound=ctx.message,
        )
        return await self._reply(ctx, "handoff_generic")

    async def _warm_handoff(self, ctx: TurnContext, reason: str) -> InboundResult:
        ctx.session, _ = await handoff(
            self.db,
            ctx.session,
            reason,
            self.handoff_sink,
            outcome=SessionOutcome.CSR_BOOKING,
            last_inbound=ctx.message,
            warm=True,
        )
        return await self._reply(ctx, "warm_handoff")

    def _backing_data_missing(self, exc: SessionBackingDataMissing) -> InboundResult:
        session = session_manager.record_backing_data_missing(self.db, exc)
        if session is not None and not is_terminal_state(session.state):
            session = transition(
                self.db, session, SessionState.HANDOFF_TO_CSR, reason=f"{exc.missing} missing",
                outcome=SessionOutcome.NEEDS_HUMAN,
            )
        # Nothing to reply into without a conversation
        can_reply = self.db.get(Conversation, exc.conversation_id) is not None
        return InboundResult(
            should_respond=can_reply,
            response_text=GENERIC_ERROR_REPLY if can_reply else None,
            new_state=SessionState.HANDOFF_TO_CSR.value,
            outcome=SessionOutcome.NEEDS_HUMAN.value,
            external_ids=external_ids(session) if session else {},
        )

    async def _fail_to_error(
        self, session: AgentSession | None, exc: Exception, message_body: str
    ) -> InboundResult:
        """Last-resort boundary: record the failure, park the session in ERROR, reply generically."""
        session_id = session.id if session is not None else None
        try:
            error(self.db, EVENT_UNHANDLED_EXCEPTION, session_id=session_id, exc=exc)
            if session is not None:
                self.db.refresh(session)
                if session.outcome == SessionOutcome.OPT_OUT:
                    return self._result(session, None)
                if not is_terminal_state(session.state):
                    session = transition(
                        self.db, session, SessionState.ERROR,
                        reason=f"Unhandled {type(exc).__name__}", outcome=SessionOutcome.NEEDS_HUMAN,
                    )
                session, _ = await handoff(
                    self.db, session, f"Unhandled {type(exc).__name__}", self.handoff_sink,
                    last_inbound=message_body,
                )
        except Exception:
            self.db.rollback()
            logger.exception(f"Failed to record error state for session {session_id}")

        return InboundResult(
            should_respond=True,
            response_text=GENERIC_ERROR_REPLY,
            new_state=SessionState.ERROR.value,
            outcome=SessionOutcome.NEEDS_HUMAN.value,
            external_ids=external_ids(session) if session is not None else {},
        )

    # ---- replies ----

    async def _reply(self, ctx: TurnContext, key: str, **context: Any) -> InboundResult:
        instruction = ResponseInstruction(
            key=key,
            text=INSTRUCTIONS[key].format(**context),
            context=context,
            fixed=key in FIXED_KEYS,
        )
        text = await self.generator.generate(ctx.tenant, ctx.contact, ctx.session, instruction, ctx.history)
        return self._result(ctx.session, text)

    @staticmethod
    def _result(session: AgentSession, text: str | None) -> InboundResult:
        return InboundResult(
            should_respond=text is not None,
            response_text=text,
            new_state=session.state,
            outcome=session.outcome if is_terminal_state(session.state) else None,
            external_ids=external_ids(session),
        )
