import pytest
from feedbackkit import events
from feedbackkit.errors import Conflict, Forbidden, NotFound, ValidationError
from feedbackkit.extensions import db
from feedbackkit.models import Comment, Feedback, OutboxEvent, Vote
from feedbackkit.services.access import Actor
from feedbackkit.services.comments import add_comment
from feedbackkit.services.feedback import submit_feedback
from feedbackkit.services.merge import merge_feedback
from feedbackkit.services.sdk_users import register_sdk_user
from feedbackkit.services.votes import cast_vote


@pytest.fixture()
def board(app, make_user, make_project):
    """Pro project with three items: A{u1,u2,u3}, B{u2,u4}, C{u5}."""
    with app.app_context():
        owner = make_user(tier="pro")
        p = make_project(owner)
        key = Actor.from_api_key(p)
        a = submit_feedback(p, key, title="Dark mode", description="d", user_id="u1").id
        cast_vote(p, key, a, "u2")
        cast_vote(p, key, a, "u3")
        b = submit_feedback(p, key, title="Night theme", description="d", user_id="u2").id
        cast_vote(p, key, b, "u4")
        c = submit_feedback(p, key, title="Black UI", description="d", user_id="u5").id
        return dict(owner_id=owner.id, project_id=p.id, a=a, b=b, c=c)

def _ctx(board):
    from feedbackkit.models import Project, User
    p = db.session.get(Project, board["project_id"])
    owner = db.session.get(User, board["owner_id"])
    return p, Actor.from_user(owner, p)

def _voters(fid):
    return sorted(uid for (uid,) in db.session.query(Vote.user_id).filter_by(feedback_id=fid))


def test_merge_deduplicates_voters(app, board):
    with app.app_context():
        p, op = _ctx(board)
        primary = merge_feedback(p, op, board["a"], [board["b"]])

        assert primary.vote_count == 4
        assert _voters(board["a"]) == ["u1", "u2", "u3", "u4"]
        assert primary.merged_feedback_ids == [board["b"]]

        sec = db.session.get(Feedback, board["b"])
        assert sec.merged_into_id == board["a"]
        assert sec.merged_at is not None
        assert sec.vote_count == 0
        assert _voters(board["b"]) == []

def test_merge_multiple_secondaries(app, board):
    with app.app_context():
        p, op = _ctx(board)
        primary = merge_feedback(p, op, board["a"], [board["b"], board["c"]])
        assert primary.vote_count == 5
        assert primary.merged_feedback_ids == [board["b"], board["c"]]
        assert db.session.query(Vote).count() == 5

def test_merge_moves_comments_with_origin_prefix(app, board):
    with app.app_context():
        p, op = _ctx(board)
        add_comment(p, Actor.from_api_key(p), board["b"], "Please add this", user_id="u4")
        merge_feedback(p, op, board["a"], [board["b"]])

        moved = db.session.query(Comment).one()
        assert moved.feedback_id == board["a"]
        assert moved.content == "[Originally on: Night theme]\n\nPlease add this"
        assert moved.user_id == "u4"

def test_merge_emits_event(app, board):
    with app.app_context():
        p, op = _ctx(board)
        merge_feedback(p, op, board["a"], [board["b"]])
        ev = db.session.query(OutboxEvent).filter_by(type=events.FEEDBACK_MERGED).one()
        assert ev.feedback_id == board["a"]
        assert ev.payload == {"primary_id": board["a"], "secondary_ids": [board["b"]]}

def test_missing_secondary_rolls_back_everything(app, board):
    with app.app_context():
        p, op = _ctx(board)
        with pytest.raises(NotFound):
            merge_feedback(p, op, board["a"], [board["b"], 999999])

        assert db.session.get(Feedback, board["a"]).vote_count == 3
        assert db.session.get(Feedback, board["b"]).merged_into_id is None
        assert _voters(board["b"]) == ["u2", "u4"]
        assert db.session.query(OutboxEvent).filter_by(type=events.FEEDBACK_MERGED).count() == 0

@pytest.mark.parametrize("secondaries", [[], "self", "dupes"])
def test_invalid_secondary_lists(app, board, secondaries):
    with app.app_context():
        p, op = _ctx(board)
        if secondaries == "self":
            secondaries = [board["a"]]
        elif secondaries == "dupes":
            secondaries = [board["b"], board["b"]]
        with pytest.raises(ValidationError):
            merge_feedback(p, op, board["a"], secondaries)

@pytest.mark.parametrize("primary,secondaries", [
    (None, "12"),
    (None, {"1": 1}),
    (None, [True]),
    (True, None),
])
def test_malformed_ids_are_rejected(app, board, primary, secondaries):
    with app.app_context():
        p, op = _ctx(board)
        if primary is None:
            primary = board["a"]
        if secondaries is None:
            secondaries = [board["b"]]
        with pytest.raises(ValidationError):
            merge_feedback(p, op, primary, secondaries)
        assert db.session.get(Feedback, board["b"]).merged_into_id is None

def test_already_merged_is_conflict(app, board):
    with app.app_context():
        p, op = _ctx(board)
        merge_feedback(p, op, board["a"], [board["b"]])
        with pytest.raises(Conflict):
            merge_feedback(p, op, board["c"], [board["b"]])
        with pytest.raises(Conflict):
            merge_feedback(p, op, board["b"], [board["c"]])

def test_chained_merge_repoints_older_casualties(app, board):
    with app.app_context():
        p, op = _ctx(board)
        merge_feedback(p, op, board["b"], [board["c"]])
        primary = merge_feedback(p, op, board["a"], [board["b"]])

        assert db.session.get(Feedback, board["c"]).merged_into_id == board["a"]
        assert set(primary.merged_feedback_ids) == {board["b"], board["c"]}
        assert primary.vote_count == 5

def test_cross_project_merge_is_rejected(app, board, make_project):
    with app.app_context():
        p, op = _ctx(board)
        other = make_project(p.owner, name="Other")
        foreign = submit_feedback(other, Actor.from_api_key(other), title="x", description="d", user_id="z").id
        with pytest.raises(ValidationError):
            merge_feedback(p, op, board["a"], [foreign])
        assert db.session.get(Feedback, foreign).merged_into_id is None

def test_member_cannot_merge(app, board, make_user, add_member):
    with app.app_context():
        p, _ = _ctx(board)
        m = make_user("m@example.com")
        add_member(p, m, "member")
        with pytest.raises(Forbidden):
            merge_feedback(p, Actor.from_user(m, p), board["a"], [board["b"]])

def test_merge_recomputes_total_mrr(app, board):
    with app.app_context():
        p, op = _ctx(board)
        key = Actor.from_api_key(p)
        register_sdk_user(p, key, "u2", 20)
        register_sdk_user(p, key, "u4", 5)
        primary = merge_feedback(p, op, board["a"], [board["b"]])
        # u2 counted once
        assert primary.total_mrr == pytest.approx(25)
        assert db.session.get(Feedback, board["b"]).total_mrr is None
