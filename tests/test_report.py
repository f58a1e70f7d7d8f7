import httpx
import json
import pytest
from unittest.mock import AsyncMock, Mock

from analyzers.models import ReviewerStat, ReviewStats, ReviewTotals
from report.feishu_notifier import FeishuNotifier
from report.formatter import (
    ReportMessage,
    format_project_report,
    format_summary_report,
    status_marker,
)
from report.review_report import ReviewReportService


def make_stats(name, reviewed, total, reviewers=()):
    rate = f"{reviewed / total * 100:.1f}" if total else "100.0"
    return ReviewStats(
        project_id=name,
        project_name=name,
        reviewers=list(reviewers),
        total_stats=ReviewTotals(
            total_commits=total,
            reviewed_commits=reviewed,
            pending_commits=total - reviewed,
            review_rate=rate,
        ),
    )


@pytest.fixture
def bob_stat():
    return ReviewerStat(
        username="bob",
        nickname="Bob",
        total_commits=4,
        reviewed_commits=3,
        pending_commits=1,
        review_rate="75.0",
    )


def test_status_marker_thresholds():
    assert status_marker("80.0") == "[OK]"
    assert status_marker("100.0") == "[OK]"
    assert status_marker("79.9") == "[WARN]"
    assert status_marker("60.0") == "[WARN]"
    assert status_marker("59.9") == "[LOW]"


def test_project_report(bob_stat):
    message = format_project_report(make_stats("group/app", 3, 4, [bob_stat]), "2024-01-02")

    assert message.title == "Code review daily report - group/app"
    assert "- Coverage: 75.0%" in message.lines
    assert "[WARN] Bob: 3/4 (75.0%)" in message.lines
    assert message.lines[-1] == "Reviewers, please handle the pending commits."


def test_project_report_without_pending():
    message = format_project_report(make_stats("group/app", 2, 2), "2024-01-02")

    assert "Reviewers" not in message.lines
    assert not any("pending commits" in line for line in message.lines)


def test_summary_report():
    message = format_summary_report(
        [make_stats("a", 9, 10), make_stats("b", 1, 10)], "2024-01-02"
    )

    assert "- Overall coverage: 50.0%" in message.lines
    assert "[OK] a: 9/10 (90.0%)" in message.lines
    assert "[LOW] b: 1/10 (10.0%)" in message.lines
    assert message.lines[-1] == "- b (10.0%)"


def test_summary_report_without_commits():
    message = format_summary_report([make_stats("a", 0, 0)], "2024-01-02")
    assert "- Overall coverage: 0%" in message.lines


def test_message_text():
    assert ReportMessage("Title", ["a", "b"]).text == "Title\n\na\nb"


def notifier_with(handler):
    return FeishuNotifier(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_send_report_posts_rich_text():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"code": 0, "msg": "success"})

    notifier = notifier_with(handler)
    ok = await notifier.send_report("https://hook.example/x", ReportMessage("T", ["l1", "l2"]))

    assert ok
    post = sent[0]["content"]["post"]["en_us"]
    assert sent[0]["msg_type"] == "post"
    assert post["title"] == "T"
    assert post["content"] == [[{"tag": "text", "text": "l1"}], [{"tag": "text", "text": "l2"}]]
    await notifier.close()


@pytest.mark.asyncio
async def test_send_fails_on_error_code():
    notifier = notifier_with(lambda request: httpx.Response(200, json={"code": 19001, "msg": "bad"}))
    assert not await notifier.send_text("https://hook.example/x", "hi")


@pytest.mark.asyncio
async def test_send_fails_on_transport_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert not await notifier_with(handler).test_webhook("https://hook.example/x")


@pytest.fixture
def mock_calculator(bob_stat):
    calculator = Mock()
    calculator.get_project_review_stats.return_value = make_stats("group/app", 3, 4, [bob_stat])
    calculator.get_all_projects_review_stats.return_value = [make_stats("group/app", 3, 4)]
    return calculator


@pytest.fixture
def mock_notifier():
    notifier = Mock()
    notifier.send_report = AsyncMock(return_value=True)
    return notifier


@pytest.mark.asyncio
async def test_project_report_is_sent(mock_calculator, mock_notifier):
    service = ReviewReportService(mock_calculator, mock_notifier)

    result = await service.send_project_report("p1", "https://hook.example/x")

    assert result.success
    url, message = mock_notifier.send_report.call_args.args
    assert url == "https://hook.example/x"
    assert message.title.endswith("group/app")


@pytest.mark.asyncio
async def test_project_report_without_stats(mock_calculator, mock_notifier):
    mock_calculator.get_project_review_stats.return_value = None
    service = ReviewReportService(mock_calculator, mock_notifier)

    result = await service.send_project_report("p1", "https://hook.example/x")

    assert not result.success
    mock_notifier.send_report.assert_not_called()


@pytest.mark.asyncio
async def test_manual_report_needs_default_url(mock_calculator, mock_notifier):
    service = ReviewReportService(mock_calculator, mock_notifier)
    assert not (await service.trigger_manual_report("all")).success


@pytest.mark.asyncio
async def test_manual_report_types(mock_calculator, mock_notifier):
    service = ReviewReportService(mock_calculator, mock_notifier, "https://hook.example/x")

    assert (await service.trigger_manual_report("all")).success
    assert not (await service.trigger_manual_report("single")).success
    assert (await service.trigger_manual_report("single", "p1")).success
    mock_calculator.get_project_review_stats.assert_called_once_with("p1")
