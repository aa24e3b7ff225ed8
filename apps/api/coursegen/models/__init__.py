from coursegen.models.course import Course
from coursegen.models.roadmap import Roadmap
from coursegen.models.course_section import CourseSection
from coursegen.models.course_subtopic import CourseSubtopic
from coursegen.models.generation_progress import GenerationProgress
from coursegen.models.course_embedding import CourseEmbedding  # noqa: F401
from coursegen.models.assessment import SectionQuiz, SubtopicFlashcard  # noqa: F401
from coursegen.models.tutor_context import TutorContext  # noqa: F401

__all__ = ["Course", "Roadmap", "CourseSection", "CourseSubtopic", "GenerationProgress"]
