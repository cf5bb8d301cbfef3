"""
Grading pipeline and text graders.

Text graders are replaced with small fakes; nothing here talks to Gemini.
"""
from django.test import SimpleTestCase

from apps.coursework.exceptions import GradingUnavailable
from apps.coursework.grading_service import (
    BaseGrader,
    GeminiGrader,
    GradingPipeline,
    MockGrader,
    grade_objective_question,
    round_half_up,
)
from apps.coursework.normalizer import normalize_exam_payload
from apps.coursework.observability import MetricsRegistry


class FixedGrader(BaseGrader):
    def __init__(self, result):
        self.result = result
        self.calls = []

    def grade_text_answer(self, prompt, rubric, answer):
        self.calls.append(answer)
        return self.result


class FailingGrader(BaseGrader):
    def __init__(self):
        self.calls = 0

    def grade_text_answer(self, prompt, rubric, answer):
        self.calls += 1
        raise GradingUnavailable("service down")


def build_exam(*questions):
    result = normalize_exam_payload({'title': 'Quiz', 'questions': list(questions)})
    assert result.is_valid, result.errors
    return result.normalized


MCQ_A = {'id': 'a', 'type': 'mcq', 'prompt': 'A?', 'options': ['x', 'y'], 'correctAnswer': 'x'}
MCQ_B = {'id': 'b', 'type': 'mcq', 'prompt': 'B?', 'options': ['x', 'y'], 'correctAnswer': 'y'}
SHORT = {'id': 's', 'type': 'short', 'prompt': 'Name it', 'rubric': 'Chlorophyll'}


class ObjectiveGradingTestCase(SimpleTestCase):

    def test_multiple_choice_exact_match(self):
        question = build_exam(MCQ_A).questions[0]
        self.assertEqual(grade_objective_question(question, 'x').score_percent, 100)
        self.assertEqual(grade_objective_question(question, 'X').score_percent, 0)
        self.assertEqual(grade_objective_question(question, None).feedback, 'Incorrect')

    def test_true_false_accepts_strings(self):
        question = build_exam({'id': 't', 'type': 'tf', 'prompt': 'T?', 'correctAnswer': True}).questions[0]
        self.assertEqual(grade_objective_question(question, 'true').score_percent, 100)
        self.assertEqual(grade_objective_question(question, True).score_percent, 100)
        self.assertEqual(grade_objective_question(question, 'yes').score_percent, 0)

    def test_missing_answer_key_is_always_incorrect(self):
        question = build_exam({'id': 'm', 'type': 'mcq', 'prompt': 'M?', 'options': ['x']}).questions[0]
        self.assertEqual(grade_objective_question(question, 'x').score_percent, 0)

    def test_same_input_same_result(self):
        question = build_exam(MCQ_A).questions[0]
        self.assertEqual(
            grade_objective_question(question, 'y'),
            grade_objective_question(question, 'y'),
        )


class GradingPipelineTestCase(SimpleTestCase):

    def setUp(self):
        self.metrics = MetricsRegistry()

    def test_half_right_objective_exam_is_graded(self):
        pipeline = GradingPipeline(grader=FailingGrader(), metrics=self.metrics)
        result = pipeline.grade(build_exam(MCQ_A, MCQ_B), {'a': 'x', 'b': 'x'})

        self.assertEqual(result.score_percent, 50)
        self.assertEqual(result.status, 'graded')
        self.assertEqual(result.summary, {'objectiveCount': 2, 'llmCount': 0, 'reviewCount': 0})

    def test_grader_failure_becomes_needs_review(self):
        grader = FailingGrader()
        pipeline = GradingPipeline(grader=grader, metrics=self.metrics)
        result = pipeline.grade(build_exam(SHORT), {'s': 'Chlorophyl'})

        self.assertEqual(result.score_percent, 0)
        self.assertEqual(result.status, 'needs_review')
        graded = result.per_question[0]
        self.assertTrue(graded.needs_review)
        self.assertEqual(graded.feedback, 'grading unavailable; marked for manual review')
        self.assertEqual(grader.calls, 1)
        self.assertEqual(self.metrics.counter('grading.text.failed'), 1)
        self.assertEqual(self.metrics.snapshot()['grading']['failures'], 1)

    def test_blank_text_answer_skips_the_grader(self):
        grader = FixedGrader({'score_percent': 100, 'feedback': 'ok'})
        pipeline = GradingPipeline(grader=grader, metrics=self.metrics)
        result = pipeline.grade(build_exam(SHORT), {'s': '   '})

        self.assertEqual(grader.calls, [])
        self.assertEqual(result.per_question[0].feedback, 'No answer submitted')
        self.assertEqual(result.status, 'needs_review')

    def test_text_score_is_clamped_and_rounded(self):
        pipeline = GradingPipeline(grader=FixedGrader({'score_percent': 150, 'feedback': 'wow'}), metrics=self.metrics)
        self.assertEqual(pipeline.grade(build_exam(SHORT), {'s': 'x'}).score_percent, 100)

        pipeline = GradingPipeline(grader=FixedGrader({'score_percent': 72.5, 'feedback': ''}), metrics=self.metrics)
        graded = pipeline.grade(build_exam(SHORT), {'s': 'x'}).per_question[0]
        self.assertEqual(graded.score_percent, 73)
        self.assertEqual(graded.feedback, 'Needs manual review.')
        self.assertFalse(graded.needs_review)

    def test_non_numeric_score_is_a_failure(self):
        pipeline = GradingPipeline(grader=FixedGrader({'score_percent': 'high'}), metrics=self.metrics)
        result = pipeline.grade(build_exam(SHORT), {'s': 'x'})
        self.assertTrue(result.per_question[0].needs_review)
        self.assertEqual(self.metrics.counter('grading.text.failed'), 1)

    def test_mixed_exam_averages_per_question(self):
        grader = FixedGrader({'score_percent': 50, 'feedback': 'partial'})
        pipeline = GradingPipeline(grader=grader, metrics=self.metrics)
        result = pipeline.grade(build_exam(MCQ_A, MCQ_B, SHORT), {'a': 'x', 'b': 'x', 's': 'pigment'})

        # (100 + 0 + 50) / 3 = 50
        self.assertEqual(result.score_percent, 50)
        self.assertEqual(result.status, 'graded')
        self.assertEqual(result.summary['llmCount'], 1)
        self.assertEqual(self.metrics.counter('grading.text.succeeded'), 1)

    def test_thread_pool_keeps_exam_order(self):
        questions = [dict(SHORT, id=f's{i}') for i in range(4)]
        grader = FixedGrader({'score_percent': 80, 'feedback': 'good'})
        pipeline = GradingPipeline(grader=grader, metrics=self.metrics, max_workers=3)
        result = pipeline.grade(build_exam(*questions), {f's{i}': f'answer {i}' for i in range(4)})

        self.assertEqual([q.question_id for q in result.per_question], ['s0', 's1', 's2', 's3'])
        self.assertEqual(len(grader.calls), 4)
        self.assertEqual(result.score_percent, 80)

    def test_round_half_up(self):
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(66.6667), 67)
        self.assertEqual(round_half_up(33.3333), 33)


class MockGraderTestCase(SimpleTestCase):

    def setUp(self):
        self.grader = MockGrader()

    def test_requires_a_rubric(self):
        with self.assertRaises(GradingUnavailable):
            self.grader.grade_text_answer('Name it', None, 'Chlorophyll')

    def test_short_answer_similarity(self):
        self.assertEqual(self.grader.grade_text_answer('Name it', 'Chlorophyll', 'chlorophyll')['score_percent'], 100)
        self.assertGreaterEqual(self.grader.grade_text_answer('Name it', 'Mitochondria', 'Mitochondrion')['score_percent'], 80)
        self.assertEqual(self.grader.grade_text_answer('Name it', 'Mitochondria', 'Ribosome')['score_percent'], 0)

    def test_essay_keyword_coverage(self):
        rubric = ('Photosynthesis is a process where plants use sunlight, water, and carbon dioxide '
                  'to produce glucose and oxygen in chloroplasts.')
        good_answer = """
        Photosynthesis is the process by which plants convert light energy
        into chemical energy. It occurs in chloroplasts and requires sunlight,
        water, and carbon dioxide. The end products are glucose and oxygen.
        """
        good = self.grader.grade_text_answer('Explain photosynthesis', rubric, good_answer)
        poor = self.grader.grade_text_answer('Explain photosynthesis', rubric, 'Plants make food somehow.')
        self.assertGreater(good['score_percent'], 50)
        self.assertLess(poor['score_percent'], 25)


class GeminiGraderTestCase(SimpleTestCase):

    def test_unconfigured_grader_raises(self):
        grader = GeminiGrader(api_key='')
        with self.assertRaises(GradingUnavailable):
            grader.grade_text_answer('Q', 'R', 'A')

    def test_parses_json_wrapped_in_markdown(self):
        parsed = GeminiGrader._parse_llm_response('```json\n{"scorePercent": 85, "feedback": "Solid"}\n```')
        self.assertEqual(parsed, {'score_percent': 85, 'feedback': 'Solid'})

    def test_rejects_non_json_reply(self):
        with self.assertRaises(GradingUnavailable):
            GeminiGrader._parse_llm_response('I think it deserves an 8/10')
        with self.assertRaises(GradingUnavailable):
            GeminiGrader._parse_llm_response('{"scorePercent": 85,}')
