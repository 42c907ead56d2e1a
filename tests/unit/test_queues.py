"""
Unit tests for session queues and next-card selection.
"""

from datetime import timedelta

from conftest import NOW, make_card

from voxdeck.review.queues import End, LearningQueue, ReviewQueue, Wait, pick_next


def seconds(s: float) -> timedelta:
    return timedelta(seconds=s)


class TestReviewQueue:
    def test_fifo_order(self):
        queue = ReviewQueue([make_card("a"), make_card("b")])

        assert queue.pop_unstudied(set()).id == "a"
        assert queue.pop_unstudied(set()).id == "b"
        assert queue.pop_unstudied(set()) is None

    def test_siblings_of_studied_notes_are_dropped(self):
        queue = ReviewQueue([make_card("a2", note_id="n1"), make_card("b", note_id="n2")])

        card = queue.pop_unstudied({"n1"})

        assert card.id == "b"
        assert len(queue) == 0

    def test_push_front(self):
        queue = ReviewQueue([make_card("b")])
        queue.push_front(make_card("a"))

        assert [c.id for c in queue] == ["a", "b"]

    def test_discard(self):
        queue = ReviewQueue([make_card("a"), make_card("b")])

        assert queue.discard("a")
        assert not queue.discard("a")
        assert [c.id for c in queue] == ["b"]


class TestLearningQueue:
    def test_ordered_by_due(self):
        queue = LearningQueue()
        queue.insert(make_card("late"), NOW + seconds(600))
        queue.insert(make_card("soon"), NOW + seconds(60))

        assert queue.peek().card.id == "soon"

    def test_equal_due_keeps_insertion_order(self):
        queue = LearningQueue()
        queue.insert(make_card("first"), NOW)
        queue.insert(make_card("second"), NOW)

        assert [entry.card.id for entry in queue] == ["first", "second"]

    def test_pop_due_respects_time(self):
        queue = LearningQueue()
        queue.insert(make_card("a"), NOW + seconds(60))

        assert queue.pop_due(NOW) is None
        assert queue.pop_due(NOW + seconds(60)).id == "a"
        assert len(queue) == 0

    def test_contains_and_discard(self):
        queue = LearningQueue()
        queue.insert(make_card("a"), NOW)

        assert "a" in queue
        assert queue.discard("a")
        assert "a" not in queue
        assert not queue.discard("a")


class TestPickNext:
    """Selection priority: due learning, unstudied review, wait, end."""

    def test_due_learning_card_wins(self):
        review = ReviewQueue([make_card("r")])
        learning = LearningQueue()
        learning.insert(make_card("l"), NOW - seconds(1))

        assert pick_next(review, learning, set(), NOW, 30).id == "l"

    def test_review_card_before_pending_learning(self):
        review = ReviewQueue([make_card("r")])
        learning = LearningQueue()
        learning.insert(make_card("l"), NOW + seconds(10))

        assert pick_next(review, learning, set(), NOW, 30).id == "r"

    def test_wait_when_learning_card_is_close(self):
        learning = LearningQueue()
        learning.insert(make_card("l"), NOW + seconds(20))

        result = pick_next(ReviewQueue(), learning, set(), NOW, 30)

        assert result == Wait(seconds=20.0)

    def test_end_when_learning_card_is_far(self):
        learning = LearningQueue()
        learning.insert(make_card("l"), NOW + seconds(600))

        assert isinstance(pick_next(ReviewQueue(), learning, set(), NOW, 30), End)

    def test_end_when_everything_is_empty(self):
        assert isinstance(pick_next(ReviewQueue(), LearningQueue(), set(), NOW, 30), End)

    def test_only_siblings_left_ends(self):
        review = ReviewQueue([make_card("a2", note_id="n1")])

        assert isinstance(pick_next(review, LearningQueue(), {"n1"}, NOW, 30), End)

    def test_learning_card_of_studied_note_is_still_shown(self):
        learning = LearningQueue()
        learning.insert(make_card("a1", note_id="n1"), NOW)

        assert pick_next(ReviewQueue(), learning, {"n1"}, NOW, 30).id == "a1"
