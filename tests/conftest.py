"""
Shared fixtures for the Closet Tagger test suite.

FakeEngine stands in for the neural model: it "generates" the words of a
scripted answer one token at a time, honouring the per-token callback, and
can be gated to hold a generation in flight.
"""
import io
import itertools
import threading
import time

import pytest
from PIL import Image

from tagger.coordinator import InferenceCoordinator
from tagger.engine import GenerationConfig, GenerationResult, InferenceEngine, TokenSignal
from tagger.prompt import get_template
from tagger.service import TaggingService
from tagger.session import ModelSession


class FakeEngine(InferenceEngine):
    """Scripted engine recording every call made by the core."""

    name = "fake"

    def __init__(self, output="Green Cotton Pant", endless=False):
        self.output = output
        self.endless = endless
        self.load_error = None
        self.prepare_error = None
        self.generate_error = None
        self.load_delay = 0.0
        # When set, every token waits for this event before being emitted
        self.gate = None
        self.generation_started = threading.Event()

        self.load_calls = 0
        self.generate_calls = 0
        self.clear_calls = 0
        self.unload_calls = 0
        self.seeds = []
        self.prompts = []
        self.generating = False
        self.unloaded_while_generating = []

    def load_model(self):
        self.load_calls += 1
        if self.load_delay:
            time.sleep(self.load_delay)
        if self.load_error is not None:
            raise self.load_error
        return {"model": "fake", "generation": self.load_calls}

    def prepare_input(self, handle, prompt, config):
        if self.prepare_error is not None:
            raise self.prepare_error
        self.prompts.append(prompt)
        return handle, prompt

    def generate(self, prepared, config, on_token):
        self.generating = True
        try:
            return self._generate(on_token)
        finally:
            self.generating = False

    def _generate(self, on_token):
        self.generate_calls += 1
        self.generation_started.set()
        if self.generate_error is not None:
            raise self.generate_error

        if self.endless:
            tokens = (f"tok{i} " for i in itertools.count())
        else:
            words = self.output.split(" ")
            tokens = [w + " " for w in words[:-1]] + words[-1:]

        pieces = []
        count = 0
        for piece in tokens:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            pieces.append(piece)
            count += 1
            if on_token(count) is TokenSignal.STOP:
                break
        return GenerationResult(text="".join(pieces), token_count=count)

    def seed(self, handle, value):
        self.seeds.append(value)

    def clear_cache(self, handle):
        self.clear_calls += 1

    def unload(self, handle):
        self.unload_calls += 1
        self.unloaded_while_generating.append(self.generating)


class ThreadCall:
    """Run a callable in a background thread and capture its outcome."""

    def __init__(self, fn, *args, **kwargs):
        self.result = None
        self.error = None
        self._thread = threading.Thread(target=self._run, args=(fn, args, kwargs), daemon=True)
        self._thread.start()

    def _run(self, fn, args, kwargs):
        try:
            self.result = fn(*args, **kwargs)
        except Exception as exc:
            self.error = exc

    def join(self, timeout=5.0):
        self._thread.join(timeout)
        assert not self._thread.is_alive(), "background call did not finish"
        return self


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def events():
    return []


@pytest.fixture
def session(engine, events):
    return ModelSession(engine, on_event=events.append)


@pytest.fixture
def coordinator(session):
    return InferenceCoordinator(session, GenerationConfig(temperature=0.0, max_tokens=50))


@pytest.fixture
def service(coordinator):
    return TaggingService(coordinator, get_template("v2"))


@pytest.fixture
def image():
    return Image.new("RGB", (64, 48), color=(20, 120, 40))


@pytest.fixture
def png_bytes(image):
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
