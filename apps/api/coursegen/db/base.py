from coursegen.db.base_class import Base  # noqa: F401

# Import all the models here so that Base has them registered
# This file should NOT be imported by models.
from coursegen.models.course import Course  # noqa: F401
from coursegen.models.roadmap import Roadmap  # noqa: F401
from coursegen.models.course_section import CourseSection  # noqa: F401
from coursegen.models.course_subtopic import CourseSubtopic  # noqa: F401
from coursegen.models.generation_progress import GenerationProgress  # noqa: F401
from coursegen.models.course_embedding import CourseEmbedding  # noqa: F401
from coursegen.models.assessment import SectionQuiz, SubtopicFlashcard  # noqa: F401
from coursegen.models.tutor_context import TutorContext  # noqa: F401
