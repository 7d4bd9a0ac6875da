import asyncio

from advisor_core.agents.advisor_session import FALLBACK_RESPONSES, AdvisorSession
from advisor_core.domain.advisor import ConversationKey
from advisor_core.domain.exceptions import ApiError, NetworkError, RateLimitError
from advisor_core.domain.models import ChatChoice, ChatMessage, ChatResult, ChatUsage
from advisor_core.infrastructure.storage.context_store import ConversationContextStore
from advisor_core.modes.profiles import resolve


class FakeProvider:
    name = "fake"

    def __init__(self, reply="done"):
        self.reply = reply
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        msg = ChatMessage(role="assistant", content=self.reply)
        return ChatResult(
            provider="fake",
            model=req.model,
            choices=[ChatChoice(index=0, message=msg)],
            usage=ChatUsage(prompt_tokens=3, completion_tokens=1, total_tokens=4),
            raw={},
        )


class FailingProvider:
    name = "failing"

    def __init__(self, exc):
        self.exc = exc
        self.calls = 0

    async def chat(self, req):
        self.calls += 1
        raise self.exc


class SlowProvider:
    name = "slow"

    async def chat(self, req):
        await asyncio.sleep(5)


def _first(seq):
    return seq[0]


def _session(provider, max_turns=6, **kw):
    store = ConversationContextStore(max_turns=max_turns)
    kw.setdefault("chooser", _first)
    return AdvisorSession(store, provider, **kw), store


def test_success_appends_user_and_assistant_turns():
    provider = FakeProvider("How much do you earn each month?")
    session, store = _session(provider)
    key = ConversationKey.of("u1", "c1")
    result = asyncio.run(session.converse(key, None, "hello"))
    assert result.ok is True
    assert result.degraded is False
    assert result.error is None
    assert result.mode == "probe"
    assert result.text == "How much do you earn each month?"
    window = store.get(key)
    assert [(t.role, t.text) for t in window] == [
        ("user", "hello"),
        ("assistant", "How much do you earn each month?"),
    ]


def test_request_uses_profile_parameters():
    provider = FakeProvider()
    session, _ = _session(provider)
    asyncio.run(session.converse(ConversationKey.of("u1"), "final", "hi"))
    req = provider.requests[0]
    profile = resolve("final")
    assert req.max_tokens == profile.max_output_tokens
    assert req.temperature == profile.temperature
    assert req.top_p == profile.top_p
    assert req.messages[0].role == "system"
    assert req.messages[0].content == profile.instruction_text


def test_invalid_explicit_mode_falls_back_to_classifier():
    provider = FakeProvider()
    session, _ = _session(provider)
    result = asyncio.run(session.converse(ConversationKey.of("u1"), "verbose", "give me a detailed plan"))
    assert result.mode == "final"


def test_explicit_mode_overrides_classifier():
    provider = FakeProvider()
    session, _ = _session(provider)
    result = asyncio.run(session.converse(ConversationKey.of("u1"), "probe", "generate a full report"))
    assert result.mode == "probe"
    assert provider.requests[0].max_tokens == resolve("probe").max_output_tokens


def test_degrades_when_provider_always_raises():
    provider = FailingProvider(RuntimeError("boom"))
    session, store = _session(provider)
    key = ConversationKey.of("u1", "c1")
    result = asyncio.run(session.converse(key, None, "hello"))
    assert result.ok is False
    assert result.degraded is True
    assert result.is_error is True
    assert result.mode == "probe"
    assert result.text
    assert result.text in FALLBACK_RESPONSES
    assert result.error == "UPSTREAM_ERROR"
    assert [(t.role, t.text) for t in store.get(key)] == [("user", "hello")]


def test_business_errors_keep_their_code():
    for exc in (
        NetworkError(code="NETWORK_ERROR", message="down"),
        RateLimitError(code="RATE_LIMIT", message="quota"),
        ApiError(code="API_ERROR", message="bad key", http_status=403),
    ):
        session, _ = _session(FailingProvider(exc))
        result = asyncio.run(session.converse(ConversationKey.of("u1"), None, "hello"))
        assert result.degraded is True
        assert result.error == exc.code


def test_empty_model_output_is_degraded():
    session, store = _session(FakeProvider("   "))
    key = ConversationKey.of("u1")
    result = asyncio.run(session.converse(key, None, "hello"))
    assert result.degraded is True
    assert result.error == "MALFORMED_OUTPUT"
    assert len(store.get(key)) == 1


def test_timeout_is_degraded():
    session, _ = _session(SlowProvider(), timeout=0.05)
    result = asyncio.run(session.converse(ConversationKey.of("u1"), "final", "generate a report"))
    assert result.degraded is True
    assert result.error == "UPSTREAM_TIMEOUT"
    assert result.mode == "final"


def test_fallback_selection_uses_injected_chooser():
    session, _ = _session(FailingProvider(RuntimeError("x")), chooser=lambda pool: pool[-1])
    result = asyncio.run(session.converse(ConversationKey.of("u1"), None, "hello"))
    assert result.text == FALLBACK_RESPONSES[-1]


def test_end_to_end_two_turns():
    provider = FakeProvider("Here is your emergency fund plan.")
    session, store = _session(provider, max_turns=6)
    key = ConversationKey.of("u1", "c9")

    first = asyncio.run(session.converse(key, None, "final report on emergency fund planning"))
    assert first.mode == "final"
    req1 = provider.requests[0]
    assert req1.messages[0].content == resolve("final").instruction_text
    # 新会话：只有 system + 本轮输入
    assert [m.role for m in req1.messages[1:]] == ["user"]
    assert len(store.get(key)) == 2

    provider.reply = "Do you already invest in ELSS?"
    second = asyncio.run(session.converse(key, "probe", "what about tax savings"))
    assert second.mode == "probe"
    req2 = provider.requests[1]
    assert [(m.role, m.content) for m in req2.messages[1:]] == [
        ("user", "final report on emergency fund planning"),
        ("assistant", "Here is your emergency fund plan."),
        ("user", "what about tax savings"),
    ]
    assert len(store.get(key)) == 4


def test_end_to_end_with_small_cap():
    provider = FakeProvider("ok")
    session, store = _session(provider, max_turns=3)
    key = ConversationKey.of("u1", "c1")
    asyncio.run(session.converse(key, None, "one"))
    asyncio.run(session.converse(key, None, "two"))
    assert [t.text for t in store.get(key)] == ["ok", "two", "ok"]


def test_same_key_turns_are_serialised():
    provider = FakeProvider("ok")
    session, store = _session(provider)
    key = ConversationKey.of("u1", "c1")

    async def scenario():
        await asyncio.gather(
            session.converse(key, None, "first"),
            session.converse(key, None, "second"),
        )

    asyncio.run(scenario())
    assert [len(r.messages) for r in provider.requests] == [2, 4]
    assert [t.text for t in store.get(key)] == ["first", "ok", "second", "ok"]


def test_different_keys_do_not_block_each_other():
    class RendezvousProvider:
        name = "rendezvous"

        def __init__(self):
            self.event = asyncio.Event()

        async def chat(self, req):
            if req.messages[-1].content == "wait":
                await asyncio.wait_for(self.event.wait(), timeout=1.0)
            else:
                self.event.set()
            return ChatResult(
                provider="rendezvous",
                model=req.model,
                choices=[ChatChoice(index=0, message=ChatMessage(role="assistant", content="ok"))],
            )

    async def scenario():
        provider = RendezvousProvider()
        session, _ = _session(provider)
        return await asyncio.gather(
            session.converse(ConversationKey.of("u1", "a"), None, "wait"),
            session.converse(ConversationKey.of("u2", "b"), None, "go"),
        )

    results = asyncio.run(scenario())
    assert all(r.ok for r in results)


class GatedProvider:
    name = "gated"

    def __init__(self, reply="Tell me your monthly expenses."):
        self.reply = reply
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def chat(self, req):
        self.started.set()
        await self.release.wait()
        msg = ChatMessage(role="assistant", content=self.reply)
        return ChatResult(provider="gated", model=req.model, choices=[ChatChoice(index=0, message=msg)])


def test_clear_waits_for_turn_in_progress():
    async def scenario():
        provider = GatedProvider()
        session, store = _session(provider)
        key = ConversationKey.of("u1", "c1")
        lock = store.lock(key)

        turn = asyncio.create_task(session.converse(key, None, "hello"))
        await provider.started.wait()
        clearing = asyncio.create_task(store.clear_locked(key))
        await asyncio.sleep(0)
        # 清空排在进行中的轮次之后
        assert not clearing.done()

        provider.release.set()
        result = await turn
        await clearing
        return result, store, key, lock

    result, store, key, lock = asyncio.run(scenario())
    assert result.ok is True
    assert store.get(key) == ()
    assert store.lock(key) is lock
