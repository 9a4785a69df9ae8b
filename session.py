"""Test session state machine.

A ``TestSession`` walks one test-taker forward through the sections of a test
variant: it owns the answer ledgers and the section timer, grades objective
sections when they close, and produces the final result record and message.

Transitions are plain synchronous methods. They run on the event loop thread
and never await, so a timer tick cannot interleave with a request handler
halfway through a transition. Storing and sending the results happen in a
background task that cannot hold back completion for longer than the grace delay;
the relay call itself is left to finish on its own.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum

import database
from config import EXAM_CONFIG
from data.test_data import TEST_VARIANTS
from ledger import AnswerLedger
from notifier import TelegramNotifier, render_result_message
from scoring import cefr_level, estimate_writing_band, grade, overall_band, percentage, to_band
from timer import SectionTimer, format_time

logger = logging.getLogger(__name__)

RESULT_VERSION = 2
SUBMIT_ERROR = "Failed to submit results. Your answers were saved locally."


class Section(str, Enum):
    READING = "reading"
    LISTENING = "listening"
    WRITING = "writing"
    SPEAKING = "speaking"


class Status(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    SUBMITTING = "submitting"
    COMPLETE = "complete"


SECTION_LABELS = {
    Section.READING: ("📚", "Reading"),
    Section.LISTENING: ("🎧", "Listening"),
    Section.WRITING: ("✍️", "Writing"),
    Section.SPEAKING: ("🗣️", "Speaking"),
}


class SessionStateError(Exception):
    """An operation was attempted in a state that does not allow it"""


class SectionPlan:
    """Timing and grading data for one section of a test variant."""

    def __init__(self, definition):
        self.section = Section(definition["section"])
        self.duration = int(definition["time_limit"])
        self.dev_duration = int(definition.get("dev_time_limit", self.duration))
        self.parts = definition["parts"]

        questions = [q for part in self.parts for q in part.get("questions", [])]
        self.key = [q["correct"] for q in questions]

        groups = {}
        for index, question in enumerate(questions):
            if question.get("group"):
                groups.setdefault(question["group"], []).append(index)
        self.groups = [tuple(indices) for indices in groups.values()]

        self.min_words = [part.get("min_words", 0) for part in self.parts]

    @property
    def objective(self):
        return bool(self.key)

    @property
    def part_count(self):
        return len(self.parts)

    @property
    def size(self):
        return len(self.key) if self.objective else self.part_count

    def duration_for(self, dev_mode):
        return self.dev_duration if dev_mode else self.duration

    def part_share(self, dev_mode):
        return max(1, self.duration_for(dev_mode) // self.part_count)


class TestDefinition:
    """A named test variant: its ordered sections and overall-band policy."""

    __test__ = False

    def __init__(self, name, variant):
        self.name = name
        self.title = variant.get("title", name)
        self.sections = [SectionPlan(definition) for definition in variant["sections"]]
        self.writing_in_overall = variant.get("writing_in_overall", True)

    @classmethod
    def from_variant(cls, name):
        try:
            return cls(name, TEST_VARIANTS[name])
        except KeyError:
            raise ValueError(f"Unknown test variant: {name}") from None

    def plan_for(self, section):
        for plan in self.sections:
            if plan.section == section:
                return plan
        return None


class SessionContext:
    """Login state for one browser.

    Created by the login gate, handed to the test session, and cleared when
    the test completes.
    """

    def __init__(self, student):
        self.token = str(uuid.uuid4())
        self.student = student
        self.authenticated = True
        self.created_at = datetime.now(timezone.utc)
        self.session = None

    def clear(self):
        self.authenticated = False


class TestSession:
    __test__ = False

    def __init__(self, context, definition=None, config=None, notifier=None, result_sink=None):
        self.config = dict(EXAM_CONFIG)
        if config:
            self.config.update(config)
        self.context = context
        self.definition = definition or TestDefinition.from_variant(self.config['variant'])
        self.notifier = notifier or TelegramNotifier()
        self.result_sink = result_sink or database.append_result

        self.status = Status.NOT_STARTED
        self.section_index = 0
        self.part = 1
        self.ledgers = {plan.section: AnswerLedger(plan.size) for plan in self.definition.sections}
        self.results = {}
        self.writing_band = None
        self.overall_band = None
        self.cefr_level = None
        self.completed_at = None
        self.record = None
        self.message = None
        self.last_error = ""
        self.submitting = False
        self.finishing = None
        self.sending = None

        self._timer = None
        self._generation = 0

    # ----- state -----

    @property
    def dev_mode(self):
        return self.config['dev_mode']

    @property
    def current_plan(self):
        return self.definition.sections[self.section_index]

    @property
    def current_section(self):
        return self.current_plan.section

    @property
    def timer(self):
        return self._timer

    @property
    def time_remaining(self):
        if self.status == Status.NOT_STARTED:
            return self.current_plan.duration_for(self.dev_mode)
        if self.status == Status.ACTIVE and self._timer is not None:
            return self._timer.remaining
        return 0

    @property
    def writing_in_overall(self):
        override = self.config.get('writing_in_overall')
        if override is None:
            return self.definition.writing_in_overall
        return override

    # ----- transitions -----

    def start(self):
        """Begin the test at the first part of the first section."""
        if not self.context.authenticated:
            raise SessionStateError("Login required before starting the test")
        if self.status != Status.NOT_STARTED:
            return False
        self.status = Status.ACTIVE
        logger.info("Test started for %s (%s)", self.context.student, self.definition.name)
        self._arm_timer(self.current_plan.duration_for(self.dev_mode))
        return True

    def set_answer(self, section, index, value):
        section = Section(section)
        if self.status != Status.ACTIVE:
            raise SessionStateError("Answers are only accepted while the test is running")
        if section != self.current_section:
            raise SessionStateError(f"The {section.value} section is not open")
        self.ledgers[section].set(index, value)

    def advance(self, expected_section=None, expected_part=None):
        """Take one step forward from the caller's view of the position.

        A trigger whose section or part no longer matches (a double click, or
        a click racing the timer) is ignored. Returns True when the session moved.
        """
        if self.status != Status.ACTIVE:
            return False
        if expected_section is not None and Section(expected_section) != self.current_section:
            return False
        if expected_part is not None and int(expected_part) != self.part:
            return False
        self._step(timed_out=False)
        return True

    def close(self):
        """Tear down timers and any in-flight delivery (logout or shutdown)."""
        self._cancel_timer()
        for task in (self.finishing, self.sending):
            if task is not None and not task.done():
                task.cancel()

    def _on_timer_expired(self, generation):
        if generation != self._generation or self.status != Status.ACTIVE:
            logger.debug("Ignoring stale timer expiry (generation %s)", generation)
            return
        logger.info("Time is up for %s part %s", self.current_section.value, self.part)
        self._step(timed_out=True)

    def _step(self, timed_out):
        plan = self.current_plan
        if self.part < plan.part_count:
            self.part += 1
            if timed_out:
                # The shared clock is exhausted; give the next part its share.
                self._arm_timer(plan.part_share(self.dev_mode))
            return

        self._close_section(plan)
        if self.section_index + 1 < len(self.definition.sections):
            self.section_index += 1
            self.part = 1
            logger.info("Moving on to %s", self.current_section.value)
            self._arm_timer(self.current_plan.duration_for(self.dev_mode))
        else:
            self._finish()

    def _arm_timer(self, duration):
        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self._timer = SectionTimer(
            duration,
            lambda: self._on_timer_expired(generation),
            interval=self.config['tick_interval'],
        )
        self._timer.start()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _close_section(self, plan):
        ledger = self.ledgers[plan.section]
        if plan.objective:
            raw = grade(ledger.values(), plan.key, plan.groups)
            total = len(plan.key)
            self.results[plan.section] = {
                'raw': raw,
                'total': total,
                'percentage': percentage(raw, total),
                'band': to_band(raw, total, zero_band=self.config['zero_score_band']),
            }
            logger.info("%s graded: %s/%s", plan.section.value.capitalize(), raw, total)
        else:
            self.results[plan.section] = {
                'word_counts': ledger.word_counts(),
                'responses': list(ledger.values()),
            }

    # ----- completion -----

    def _finish(self):
        self._cancel_timer()
        self._compute_final_scores()
        self.status = Status.SUBMITTING
        self.submitting = True
        self.last_error = ""
        self.completed_at = datetime.now()

        self.record = self.build_record()
        self.message = render_result_message(self.summary())
        logger.info("========== TEST RESULTS ==========\n%s", self.message)

        self.finishing = asyncio.get_running_loop().create_task(self._deliver())

    def _compute_final_scores(self):
        bands = [
            self.results[plan.section]['band']
            for plan in self.definition.sections if plan.objective
        ]
        writing = self.definition.plan_for(Section.WRITING)
        if writing is not None:
            self.writing_band = estimate_writing_band(
                self.results[Section.WRITING]['word_counts'], writing.min_words
            )
            if self.writing_in_overall:
                bands.append(self.writing_band)
        self.overall_band = overall_band(bands)
        self.cefr_level = cefr_level(self.overall_band)

    def _store_record(self):
        try:
            self.result_sink(self.record)
        except Exception as e:
            logger.error("Error storing results: %s", e)

    async def _deliver(self):
        """Store and send the results, completing after at most the grace delay.

        The relay call runs as its own task and is not cancelled when the
        grace delay runs out; a late failure still sets ``last_error``.
        """
        grace_delay = self.config['grace_delay']
        try:
            storing = asyncio.ensure_future(asyncio.to_thread(self._store_record))
            self.sending = asyncio.ensure_future(self.notifier.send(self.message))
            self.sending.add_done_callback(self._on_sent)
            _, pending = await asyncio.wait({storing, self.sending}, timeout=grace_delay)
            if pending:
                logger.warning(
                    "Results still being delivered after %ss grace delay; completing the test",
                    grace_delay
                )
        finally:
            self._complete()

    def _on_sent(self, task):
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Error submitting results: %r", error)
            self.last_error = SUBMIT_ERROR

    def _complete(self):
        self.submitting = False
        self.status = Status.COMPLETE
        self.context.clear()
        logger.info("Test complete for %s: overall band %s", self.context.student, self.overall_band)

    # ----- results -----

    def build_record(self):
        record = {
            'version': RESULT_VERSION,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'student': self.context.student,
            'variant': self.definition.name,
        }
        for plan in self.definition.sections:
            result = self.results.get(plan.section, {})
            name = plan.section.value
            if plan.objective:
                record[f'{name}Score'] = result.get('raw', 0)
                record[f'{name}Total'] = result.get('total', len(plan.key))
                record[f'{name}Percentage'] = result.get('percentage', 0)
                record[f'{name}Band'] = result.get('band', 0.0)
            elif plan.section == Section.WRITING:
                for number, words in enumerate(result.get('word_counts', []), start=1):
                    record[f'writingTask{number}Words'] = words
                record['writingResponses'] = result.get('responses', [])
                record['writingBand'] = self.writing_band
                record['writingInOverall'] = self.writing_in_overall
            else:
                record[f'{name}Words'] = sum(result.get('word_counts', []))
                record[f'{name}Notes'] = result.get('responses', [])
        record['overallBand'] = self.overall_band
        record['cefrLevel'] = self.cefr_level
        record['completed'] = (self.completed_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S")
        return record

    def summary(self):
        """Values for the result message template"""
        objective = []
        writing = None
        speaking = None
        for plan in self.definition.sections:
            result = self.results.get(plan.section, {})
            icon, label = SECTION_LABELS[plan.section]
            if plan.objective:
                objective.append({
                    'icon': icon,
                    'label': label,
                    'raw': result.get('raw', 0),
                    'total': result.get('total', len(plan.key)),
                    'percentage': result.get('percentage', 0),
                    'band': result.get('band', 0.0),
                })
            elif plan.section == Section.WRITING:
                writing = {
                    'word_counts': result.get('word_counts', []),
                    'band': self.writing_band or 0.0,
                    'in_overall': self.writing_in_overall,
                }
            else:
                speaking = {'word_counts': result.get('word_counts', [])}
        return {
            'title': self.definition.title,
            'student': self.context.student,
            'objective': objective,
            'writing': writing,
            'speaking': speaking,
            'overall_band': self.overall_band or 0.0,
            'cefr_level': self.cefr_level or "N/A",
            'completed': (self.completed_at or datetime.now()).strftime("%Y-%m-%d %H:%M:%S"),
        }

    def snapshot(self):
        """Current state as JSON-serializable data for the front end"""
        plan = self.current_plan
        state = {
            'variant': self.definition.name,
            'title': self.definition.title,
            'status': self.status.value,
            'section': plan.section.value,
            'sections': [p.section.value for p in self.definition.sections],
            'part': self.part,
            'parts': plan.part_count,
            'part_title': plan.parts[self.part - 1].get('title', ''),
            'time_remaining': self.time_remaining,
            'time_display': format_time(self.time_remaining),
            'answered': self.ledgers[plan.section].answered_count(),
            'questions': plan.size,
            'submitting': self.submitting,
            'error': self.last_error,
        }
        if self.record is not None:
            state['result'] = self.record
        return state
