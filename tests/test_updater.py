import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

from errors import RemoteUnavailable, Unauthorized
from miners.models import GitLabBranch, GitLabComment, GitLabCommit, GitLabMember
from storage.commit_cache_store import CommitCacheStore
from storage.project_store import ProjectStore
from sync.updater import IncrementalUpdater


def gitlab_commit(commit_id, message="Add feature", author="Alice", age_hours=1):
    return GitLabCommit(
        id=commit_id,
        short_id=commit_id[:8],
        title=message.splitlines()[0],
        message=message,
        author_name=author,
        committed_date=datetime.now(timezone.utc) - timedelta(hours=age_hours),
    )


def gitlab_comment(username, name=None, note="LGTM"):
    return GitLabComment(
        note=note,
        author={"username": username, "name": name},
        created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
    )


@pytest.fixture
def project(make_project):
    return make_project()


@pytest.fixture
def mock_miner():
    """Mock GitLab miner with a default branch and no data."""
    miner = Mock()
    miner.fetch_branches = AsyncMock(return_value=[GitLabBranch(name="main", default=True)])
    miner.fetch_commits = AsyncMock(return_value=[])
    miner.fetch_comments = AsyncMock(return_value=[])
    miner.fetch_members = AsyncMock(return_value=[])
    return miner


@pytest.fixture
def mock_project_store(project):
    store = Mock()
    store.find_by_id.return_value = project
    store.find_active.return_value = [project]
    store.update_user_mappings.return_value = True
    return store


@pytest.fixture
def cache_store(tmp_path):
    return CommitCacheStore(str(tmp_path))


@pytest.fixture
def updater(mock_miner, cache_store, mock_project_store):
    return IncrementalUpdater(mock_miner, cache_store, mock_project_store)


@pytest.mark.asyncio
async def test_first_pull_backfills_and_flags_filtered_commits(updater, mock_miner, cache_store, project):
    mock_miner.fetch_commits.return_value = [
        gitlab_commit("c2"),
        gitlab_commit("c1", message="Merge branch 'feature' into main"),
    ]

    result = await updater.pull_commits(project)

    assert result.new_commits == 2
    assert result.pending_reviews == 1
    since = mock_miner.fetch_commits.call_args.args[1]
    assert since < datetime.now(timezone.utc) - timedelta(days=6)
    assert mock_miner.fetch_commits.call_args.args[2] == "main"

    cache = cache_store.read(project.id)
    c2, c1 = cache.commits
    assert (c2.skip_review, c2.needs_review) == (False, True)
    assert (c1.skip_review, c1.needs_review) == (True, False)
    assert cache_store.read_branches(project.id).default_branch == "main"


@pytest.mark.asyncio
async def test_empty_pull_only_advances_pull_time(updater, mock_miner, cache_store, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1")]
    await updater.pull_commits(project)
    first = cache_store.read(project.id)

    mock_miner.fetch_commits.return_value = []
    result = await updater.pull_commits(project)
    second = cache_store.read(project.id)

    assert result.new_commits == 0
    assert mock_miner.fetch_commits.call_args.args[1] == first.last_commit_pull_time
    assert second.last_commit_pull_time > first.last_commit_pull_time
    assert [c.id for c in second.commits] == ["c1"]


@pytest.mark.asyncio
async def test_repeated_commits_are_not_duplicated(updater, mock_miner, cache_store, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1")]
    await updater.pull_commits(project)
    mock_miner.fetch_commits.return_value = [gitlab_commit("c2"), gitlab_commit("c1")]
    result = await updater.pull_commits(project)

    assert result.new_commits == 1
    assert [c.id for c in cache_store.read(project.id).commits] == ["c2", "c1"]


@pytest.mark.asyncio
async def test_branch_failure_does_not_stop_commit_pull(updater, mock_miner, project):
    mock_miner.fetch_branches.side_effect = RemoteUnavailable("down")
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1")]

    result = await updater.pull_commits(project)

    assert result.new_commits == 1
    assert mock_miner.fetch_commits.call_args.args[2] is None


@pytest.mark.asyncio
async def test_comment_from_reviewer_clears_needs_review(updater, mock_miner, cache_store, project):
    # Alice authored the commit, so only bob is required
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", author="Alice")]
    await updater.pull_commits(project)
    mock_miner.fetch_comments.return_value = [gitlab_comment("bob")]

    result = await updater.pull_comments(project)

    assert result.new_comments == 1
    assert result.pending_reviews == 0
    cache = cache_store.read(project.id)
    assert cache.commits[0].has_comments
    assert not cache.commits[0].needs_review
    assert cache.last_comment_pull_time is not None


@pytest.mark.asyncio
async def test_partial_review_keeps_needs_review(updater, mock_miner, cache_store, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", author="Carol")]
    await updater.pull_commits(project)
    mock_miner.fetch_comments.return_value = [gitlab_comment(None, name="Bob")]

    result = await updater.pull_comments(project)

    # bob commented by display name, alice still missing
    assert result.pending_reviews == 1
    assert cache_store.read(project.id).commits[0].needs_review


@pytest.mark.asyncio
async def test_comments_are_appended_once(updater, mock_miner, cache_store, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", author="Carol")]
    await updater.pull_commits(project)
    mock_miner.fetch_comments.return_value = [gitlab_comment("bob")]

    await updater.pull_comments(project)
    second = await updater.pull_comments(project)

    assert second.new_comments == 0
    assert cache_store.read(project.id).commits[0].comments_count == 1


@pytest.mark.asyncio
async def test_pull_comments_without_cache_or_pending(updater, mock_miner, project):
    assert await updater.pull_comments(project) is None

    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", message="Merge branch 'x'")]
    await updater.pull_commits(project)

    assert await updater.pull_comments(project) is None
    mock_miner.fetch_comments.assert_not_called()


@pytest.mark.asyncio
async def test_pull_comments_skips_busy_project(updater, project):
    async with updater.lock_for(project.id):
        assert updater.is_busy(project.id)
        assert await updater.pull_comments(project, skip_if_busy=True) is None


@pytest.mark.asyncio
async def test_failed_comment_fetch_is_counted(updater, mock_miner, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c2"), gitlab_commit("c1")]
    await updater.pull_commits(project)
    mock_miner.fetch_comments.side_effect = [RemoteUnavailable("down"), [gitlab_comment("bob")]]

    result = await updater.pull_comments(project)

    assert result.failed_commits == 1
    assert result.new_comments == 1


@pytest.mark.asyncio
async def test_unauthorized_suspends_until_token_changes(updater, mock_miner, make_project):
    project = make_project()
    mock_miner.fetch_commits.side_effect = Unauthorized("401", status_code=401)

    with pytest.raises(Unauthorized):
        await updater.pull_commits(project)

    assert updater.is_suspended(project)
    assert updater.suspended_projects() == [project.id]
    assert not updater.is_suspended(make_project(access_token="token-2"))
    assert updater.suspended_projects() == []


@pytest.mark.asyncio
async def test_push_on_tracked_branch_merges_stubs(updater, cache_store, project):
    payload = [
        {
            "id": "a" * 40,
            "message": "Older change",
            "timestamp": "2024-01-02T09:00:00+00:00",
            "url": "https://gitlab.example.com/c/a",
            "author": {"name": "Carol", "email": "carol@example.com"},
        },
        {
            "id": "b" * 40,
            "message": "Newer change",
            "timestamp": "2024-01-02T10:00:00+00:00",
            "author": {"name": "Carol"},
        },
    ]

    result = await updater.apply_push(project, "refs/heads/main", payload, "main")

    assert result.new_commits == 2
    cache = cache_store.read(project.id)
    assert [c.id for c in cache.commits] == ["b" * 40, "a" * 40]
    assert cache.commits[0].short_id == "bbbbbbbb"
    assert cache.commits[0].needs_review


@pytest.mark.asyncio
async def test_push_skips_malformed_commits(updater, cache_store, project):
    payload = [
        {"id": "a" * 40, "message": "Bad date", "timestamp": "not-a-date"},
        {"id": "b" * 40, "message": "Odd author", "author": "Carol"},
        "not-a-commit",
        {"id": "c" * 40, "message": "Fine", "timestamp": "2024-01-02T10:00:00+00:00"},
    ]

    result = await updater.apply_push(project, "refs/heads/main", payload, "main")

    assert result.new_commits == 2
    cache = cache_store.read(project.id)
    assert [c.id for c in cache.commits] == ["c" * 40, "b" * 40]
    assert cache.commits[1].author_name == ""

@pytest.mark.asyncio
async def test_push_on_other_branch_is_ignored(updater, cache_store, project):
    payload = [{"id": "a" * 40, "message": "WIP", "author": {"name": "Carol"}}]

    assert await updater.apply_push(project, "refs/heads/feature", payload, "main") is None
    assert not cache_store.exists(project.id)


@pytest.mark.asyncio
async def test_note_on_cached_commit_refreshes_its_comments(updater, mock_miner, project):
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", author="Alice")]
    await updater.pull_commits(project)
    mock_miner.fetch_comments.return_value = [gitlab_comment("bob")]

    result = await updater.apply_note(project, "c1")

    assert result.new_comments == 1
    assert result.pending_reviews == 0
    mock_miner.fetch_comments.assert_awaited_once_with(project, "c1")


@pytest.mark.asyncio
async def test_note_on_unknown_commit_is_ignored(updater, mock_miner, project):
    assert await updater.apply_note(project, "zzz") is None
    mock_miner.fetch_comments.assert_not_called()


@pytest.mark.asyncio
async def test_apply_incremental_update_is_idempotent(updater, cache_store, project, make_commit, make_comment):
    commits = [make_commit("c1", author="Carol")]
    comments = {"c1": [make_comment("bob"), make_comment("alice")]}

    first = await updater.apply_incremental_update(project, commits, comments)
    second = await updater.apply_incremental_update(project, commits, comments)

    assert (first.new_commits, first.new_comments, first.pending_reviews) == (1, 2, 0)
    assert (second.new_commits, second.new_comments) == (0, 0)
    assert cache_store.read(project.id).commits[0].comments_count == 2


@pytest.mark.asyncio
async def test_manual_refresh_reapplies_filters_and_clears_suspension(
    updater, mock_miner, mock_project_store, cache_store, make_project
):
    project = make_project(filter_rules="")
    mock_project_store.find_by_id.return_value = project
    mock_miner.fetch_commits.return_value = [gitlab_commit("c1", message="Update deps")]
    await updater.pull_commits(project)
    assert cache_store.read(project.id).commits[0].needs_review

    updater.suspend(project)
    updated = make_project(filter_rules="^Update")
    mock_project_store.find_by_id.return_value = updated
    mock_miner.fetch_members.return_value = [GitLabMember(id=1, username="bob", name="Bob")]
    mock_miner.fetch_commits.return_value = []

    result = await updater.refresh_project(updated)

    assert not updater.is_suspended(updated)
    mock_project_store.update_user_mappings.assert_called_once_with("p1", {"bob": "Bob"})
    since = mock_miner.fetch_commits.call_args.args[1]
    assert since < datetime.now(timezone.utc) - timedelta(days=6)
    commit = cache_store.read(project.id).commits[0]
    assert commit.skip_review and not commit.needs_review
    assert result.pending_reviews == 0
    mock_miner.fetch_comments.assert_awaited_with(updated, "c1")


@pytest.mark.asyncio
async def test_refresh_all_continues_after_failure(updater, mock_miner, mock_project_store, make_project):
    good, bad = make_project(id="good"), make_project(id="bad")
    mock_project_store.find_active.return_value = [bad, good]
    mock_project_store.find_by_id.return_value = None

    async def fetch_commits(project, since, ref_name=None):
        if project.id == "bad":
            raise RemoteUnavailable("down")
        return []

    mock_miner.fetch_commits.side_effect = fetch_commits

    results = await updater.refresh_all()

    assert results["bad"] is None
    assert results["good"].project_id == "good"


@pytest.mark.asyncio
async def test_skipped_commit_stays_reviewed_after_comments(updater, cache_store, project, make_commit, make_comment):
    merge = make_commit("c1", author="Carol", message="Merge branch 'feature' into main", skip_review=True)

    await updater.apply_incremental_update(project, commits=[merge])
    result = await updater.apply_incremental_update(
        project, comments={"c1": [make_comment("bob"), make_comment("alice", minutes=1)]}
    )

    commit = cache_store.read(project.id).get_commit("c1")
    assert commit.skip_review
    assert not commit.needs_review
    assert len(commit.comments) == 2
    assert result.pending_reviews == 0


@pytest.mark.asyncio
async def test_user_mapping_refresh_replaces_stored_names(tmp_path, mock_miner, cache_store, project):
    projects_file = tmp_path / "projects.json"
    raw = project.model_dump(mode="json")
    raw["access_token"] = "token-1"
    raw["user_mappings"] = {"bob": "Bob Old"}
    projects_file.write_text(json.dumps([raw]), encoding="utf-8")
    project_store = ProjectStore(str(projects_file))
    updater = IncrementalUpdater(mock_miner, cache_store, project_store)
    mock_miner.fetch_members.return_value = [GitLabMember(id=1, username="bob", name="Bob New")]

    await updater.refresh_user_mappings(project)

    assert project_store.find_by_id(project.id).user_mappings == {"bob": "Bob New"}

    mock_miner.fetch_members.return_value = []
    assert await updater.refresh_user_mappings(project) == {}
    assert project_store.find_by_id(project.id).user_mappings == {"bob": "Bob New"}
