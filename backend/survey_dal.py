# survey_dal.py - Surveys are challenges that also collect an answer per task
import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from action_manager import action_manager
from challenge_dal import challenge_dal
from errors import NotFoundError
from models import (
    Answer as AnswerRow, SurveyAnswer, Task as TaskRow, ChallengeType, ItemType, ActionType,
)
from schemas import Answer, Survey, SurveyCreate, User

logger = logging.getLogger("maproulette.surveys")


class SurveyDAL:

    async def get_answers(self, survey_id: int, db: AsyncSession) -> List[Answer]:
        result = await db.execute(
            select(AnswerRow).where(AnswerRow.survey_id == survey_id).order_by(AnswerRow.id)
        )
        return [Answer.model_validate(row) for row in result.scalars().all()]

    async def retrieve_by_id(self, id: int, db: AsyncSession) -> Optional[Survey]:
        challenge = await challenge_dal.retrieve_by_id(id, db)
        if challenge is None or not challenge.is_survey:
            return None
        return Survey(**challenge.model_dump(), answers=await self.get_answers(id, db))

    async def insert(self, data: SurveyCreate, user: User, db: AsyncSession) -> Survey:
        challenge = await challenge_dal.insert(
            data, user, db, challenge_type=ChallengeType.SURVEY, answers=data.answers
        )
        return Survey(**challenge.model_dump(), answers=await self.get_answers(challenge.id, db))

    async def answer_question(
        self, survey_id: int, task_id: int, answer_id: int, user: User, db: AsyncSession
    ) -> None:
        """Record ``user``'s answer to the survey question for one of its tasks"""
        survey = await self.retrieve_by_id(survey_id, db)
        if survey is None:
            raise NotFoundError("Survey", survey_id)
        task = await db.get(TaskRow, task_id)
        if task is None or task.challenge_id != survey_id:
            raise NotFoundError("Task", task_id)
        if answer_id not in {a.id for a in survey.answers}:
            raise NotFoundError("Answer", answer_id)

        try:
            db.add(SurveyAnswer(
                osm_user_id=user.osm_profile.id,
                project_id=survey.project_id,
                survey_id=survey_id,
                task_id=task_id,
                answer_id=answer_id,
            ))
            await action_manager.set_action(
                user, ItemType.SURVEY, survey_id, ActionType.QUESTION_ANSWERED, db,
                extra=str(answer_id), commit=False,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("User %s answered survey %s task %s with %s", user.id, survey_id, task_id, answer_id)


survey_dal = SurveyDAL()
