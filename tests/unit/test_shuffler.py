# =============================================================================
# TESTS - Option Shuffler
# =============================================================================

import random


def _options(*texts):
    from codegate.models.schemas import QuizOption

    return tuple(
        QuizOption(label=chr(ord("A") + i), text=text, explanation=f"why {text}")
        for i, text in enumerate(texts)
    )


class TestShuffleOptions:
    """Tests for option permutation."""

    def test_texts_preserved(self, seeded_rng):
        """The multiset of texts is unchanged and labels are A, B, C, D."""
        from codegate.engine.shuffler import shuffle_options

        options = _options("one", "two", "three", "four")

        result = shuffle_options(options, "A", seeded_rng)

        assert sorted(o.text for o in result.options) == ["four", "one", "three", "two"]
        assert [o.label for o in result.options] == ["A", "B", "C", "D"]

    def test_correct_option_tracked(self):
        """The new correct label points at the original correct text."""
        from codegate.engine.shuffler import shuffle_options

        options = _options("right", "wrong", "also wrong")

        for seed in range(20):
            result = shuffle_options(options, "A", random.Random(seed))
            correct = next(o for o in result.options if o.label == result.correct_label)
            assert correct.text == "right"

    def test_explanations_stay_attached(self, seeded_rng):
        """Each explanation moves with its option."""
        from codegate.engine.shuffler import shuffle_options

        result = shuffle_options(_options("x", "y", "z"), "B", seeded_rng)

        assert all(o.explanation == f"why {o.text}" for o in result.options)

    def test_duplicate_texts_tracked_by_position(self):
        """Repeated option texts keep the correct explanation."""
        from codegate.engine.shuffler import shuffle_options
        from codegate.models.schemas import QuizOption

        options = (
            QuizOption(label="A", text="same", explanation="wrong"),
            QuizOption(label="B", text="same", explanation="right"),
            QuizOption(label="C", text="other", explanation="wrong"),
        )

        for seed in range(20):
            result = shuffle_options(options, "B", random.Random(seed))
            correct = next(o for o in result.options if o.label == result.correct_label)
            assert correct.explanation == "right"

    def test_correct_is_not_always_a(self):
        """Across seeds the correct answer lands on different labels."""
        from codegate.engine.shuffler import shuffle_options

        options = _options("right", "wrong", "other", "last")

        labels = {
            shuffle_options(options, "A", random.Random(seed)).correct_label
            for seed in range(50)
        }

        assert len(labels) > 1

    def test_single_option_unchanged(self, seeded_rng):
        """One option is returned as is."""
        from codegate.engine.shuffler import shuffle_options

        options = _options("only")

        result = shuffle_options(options, "A", seeded_rng)

        assert result.options == options
        assert result.correct_label == "A"

    def test_empty_options_unchanged(self, seeded_rng):
        """Zero options are returned as is."""
        from codegate.engine.shuffler import shuffle_options

        result = shuffle_options((), "A", seeded_rng)

        assert result.options == ()

    def test_full_width_correct_label(self, seeded_rng):
        """A full-width correct label is matched after normalisation."""
        from codegate.engine.shuffler import shuffle_options

        result = shuffle_options(_options("right", "wrong"), "Ａ", seeded_rng)
        correct = next(o for o in result.options if o.label == result.correct_label)

        assert correct.text == "right"


class TestShuffleQuiz:
    """Tests for shuffling a whole quiz."""

    def test_shuffle_quiz_keeps_fields(self, sample_quiz, seeded_rng):
        """Question, hint and level survive the shuffle."""
        from codegate.engine.shuffler import shuffle_quiz

        shuffled = shuffle_quiz(sample_quiz, seeded_rng)

        assert shuffled.question == sample_quiz.question
        assert shuffled.hint == sample_quiz.hint
        assert shuffled.correct_option.text == "It resolves later"
