import pytest

from screener.alerts.formatting import condition_label, format_batch_message
from screener.alerts.notifiers import ConsoleNotifier, NotificationDispatcher, partition
from screener.alerts.rules import AlertRule, condition_from
from tests.helpers.fakes import FakeNotifier


def make_rule(type_="price_increase", threshold=20, period="2h", name="Pumps"):
    return AlertRule(id="r1", name=name, condition=condition_from(type_, threshold), time_period=period)


def test_partition_sizes():
    syms = [f"S{i}" for i in range(250)]
    assert [len(b) for b in partition(syms)] == [100, 100, 50]
    assert partition([]) == []


def test_single_batch_message_has_no_part_suffix():
    text = format_batch_message(make_rule(), ["AAAUSDT", "BBBUSDT"], 0, 1)
    assert text == (
        "📈 Pumps\n"
        "Coins: AAAUSDT, BBBUSDT\n"
        "Condition: Price increase ≥ 20%\n"
        "Period: 2h"
    )


@pytest.mark.parametrize("type_,label", [
    ("price_decrease", "Price decrease ≥ 7.5%"),
    ("volatility", "Volatility ≥ 7.5%"),
    ("volume_spike", "Volume spike ≥ 7.5%"),
    ("density_appearance", "Density (range) ≤ 7.5%"),
])
def test_condition_labels(type_, label):
    assert condition_label(make_rule(type_, 7.5)) == label


@pytest.mark.asyncio
async def test_250_symbols_produce_three_tagged_batches():
    notifier = FakeNotifier()
    syms = [f"S{i:03d}USDT" for i in range(250)]
    report = await NotificationDispatcher(notifier).dispatch("chat-1", make_rule(), syms)

    assert report.batches == 3
    assert report.failed_batches == 0
    assert report.delivered == syms
    assert len(notifier.sent) == 3
    for i, (target, text) in enumerate(notifier.sent):
        assert target == "chat-1"
        assert f"(part {i + 1}/3)" in text.splitlines()[0]
    assert notifier.sent[2][1].count("USDT") == 50


@pytest.mark.asyncio
async def test_failed_batch_does_not_stop_the_rest():
    notifier = FakeNotifier(fail_on={0}, raise_on={1})
    syms = [f"S{i:03d}USDT" for i in range(250)]
    report = await NotificationDispatcher(notifier).dispatch("chat-1", make_rule(), syms)

    assert len(notifier.sent) == 3
    assert report.failed_batches == 2
    assert report.delivered == syms[200:]


@pytest.mark.asyncio
async def test_console_notifier_prints(capsys):
    assert await ConsoleNotifier().send("chat", "hello") is True
    assert "hello" in capsys.readouterr().out
