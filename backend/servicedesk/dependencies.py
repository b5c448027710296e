"""FastAPI dependencies for the workflow use-cases."""
from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .use_cases.context import WorkflowContext, build_workflow_context


def get_workflow_context(db: Session = Depends(get_db)) -> WorkflowContext:
    return build_workflow_context(db)
