import asyncio

import pytest

from notifier import NotificationError
from session import SessionContext, TestSession


class FakeNotifier:
    def __init__(self, fail=False, hang=False, delay=0):
        self.fail = fail
        self.delay = 3600 if hang else delay
        self.messages = []
        self.delivered = []

    async def send(self, message):
        self.messages.append(message)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise NotificationError("relay unavailable")
        self.delivered.append(message)


SESSION_CONFIG = {
    'variant': 'ielts_academic',
    'dev_mode': True,
    # ticks are driven by hand in tests
    'tick_interval': 3600,
    'grace_delay': 0.2,
    'zero_score_band': 0.0,
    'writing_in_overall': None,
}


def run_out(timer):
    """Tick a timer until it expires"""
    while not timer.expired:
        timer.tick()


def correct_answers(plan):
    answers = [expected if isinstance(expected, str) else expected[0] for expected in plan.key]
    for group in plan.groups:
        for index, letter in zip(group, plan.key[group[0]]):
            answers[index] = letter
    return answers


def fill(session, answers):
    for index, value in enumerate(answers):
        session.set_answer(session.current_section, index, value)


def words(count):
    return " ".join(["word"] * count)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def records():
    return []


@pytest.fixture
def context():
    return SessionContext("Abduraxmatov Abdulaziz")


@pytest.fixture
def make_session(context, notifier, records):
    def factory(**overrides):
        config = dict(SESSION_CONFIG)
        config.update(overrides.pop('config', {}))
        return TestSession(
            overrides.pop('context', context),
            config=config,
            notifier=overrides.pop('notifier', notifier),
            result_sink=overrides.pop('result_sink', records.append),
        )
    return factory
