"""HTTP adapter for the school election core."""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, ValidationError

from .audit import AuditActionType
from .auth import decode_session_token, issue_student_token, student_id_from_session
from .config import Settings
from .exceptions import PolicyDeniedError, SchoolVoteError
from .models import CamelModel, NewElection, SessionIdentity
from .permissions import Page
from .services import Services
from .session_gate import AdminAction, SessionGate
from .tokens import is_valid_token_format, normalize_token

logger = logging.getLogger(__name__)


# Request bodies

class ImportRequest(CamelModel):
    rows: List[Dict[str, Any]]
    overwrite: bool = False


class DisplaySettingsUpdate(CamelModel):
    global_show_raw_score: Optional[bool] = None
    global_show_winner_only: Optional[bool] = None
    apply_to_all_positions: bool = False


class PositionConfigUpdate(CamelModel):
    show_raw_score: Optional[bool] = None
    show_winner_only: Optional[bool] = None
    skip: Optional[bool] = None


class StudentLogin(CamelModel):
    student_id: Union[int, str]
    national_id: str


class BallotSubmission(CamelModel):
    election_id: str
    choices: Dict[str, Optional[str]] = Field(default_factory=dict)


class TokenCheck(BaseModel):
    token: str


class CreateAdminRequest(CamelModel):
    username: str
    display_name: Optional[str] = None
    access_level: int


def _actor_id(session: SessionIdentity) -> int:
    return int(session.identity) if session.identity.isdigit() else -1


def create_app(services: Services, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or services.settings
    app = FastAPI(title="School Election Core", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    security = HTTPBearer(auto_error=False)

    @app.exception_handler(PolicyDeniedError)
    async def policy_denied_handler(request, exc: PolicyDeniedError):
        return RedirectResponse(url=exc.redirect_to, status_code=303)

    @app.exception_handler(SchoolVoteError)
    async def school_vote_error_handler(request, exc: SchoolVoteError):
        logger.error("Unhandled %s: %s", exc.code, exc.message)
        return JSONResponse(status_code=500, content=exc.to_dict())

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc: ValidationError):
        return JSONResponse(status_code=400, content={"detail": f"Invalid data: {exc.error_count()} invalid field(s)"})

    def get_gate(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> SessionGate:
        def resolver() -> Optional[SessionIdentity]:
            if credentials is None:
                return None
            return decode_session_token(credentials.credentials, settings.jwt_secret)
        return SessionGate(resolver)

    def require_page(page: Page):
        async def dependency(gate: SessionGate = Depends(get_gate)) -> SessionIdentity:
            decision = await gate.authorize_page(page)
            return decision.raise_for_denial()
        return dependency

    def require_action(action: AdminAction):
        async def dependency(gate: SessionGate = Depends(get_gate)) -> SessionIdentity:
            decision = await gate.authorize_action(action)
            return decision.raise_for_denial()
        return dependency

    def audit(action: AuditActionType, session: SessionIdentity, title: str, description: str = "",
              **metadata: Any) -> None:
        services.audit.record(action, title, description, {"actor": session.identity, **metadata})

    @app.get("/")
    async def root():
        return {"message": "School Election Core API", "version": "1.0.0"}

    @app.get("/admin/pages/{page}")
    async def open_page(page: str, gate: SessionGate = Depends(get_gate)):
        """Gate a page load; denied callers are redirected to their default page."""
        decision = await gate.authorize_page(page)
        session = decision.raise_for_denial()
        return {"page": page, "identity": session.identity}

    # Students

    @app.get("/api/students")
    async def list_students(classroom: Optional[str] = None,
                            session: SessionIdentity = Depends(require_page(Page.STUDENTS))):
        students = (services.students.get_students_by_classroom(classroom) if classroom
                    else services.students.get_all_students())
        return [s.model_dump(mode="json") for s in students]

    @app.get("/api/students/stats")
    async def student_stats(session: SessionIdentity = Depends(require_page(Page.STUDENTS))):
        return services.students.get_student_stats().model_dump(mode="json")

    @app.get("/api/students/classrooms")
    async def classrooms(session: SessionIdentity = Depends(require_page(Page.STUDENTS))):
        return services.students.get_unique_classrooms()

    @app.post("/api/students")
    async def add_student(data: Dict[str, Any],
                          session: SessionIdentity = Depends(require_action(AdminAction.MANAGE_STUDENTS))):
        result = services.students.add_student(data)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        audit(AuditActionType.ADD_STUDENT, session, "Student added", result.student.full_name,
              student_id=result.student.id)
        return result.model_dump(mode="json")

    @app.post("/api/students/import")
    async def import_students(request: ImportRequest,
                              session: SessionIdentity = Depends(require_action(AdminAction.MANAGE_STUDENTS))):
        result = services.students.import_students(request.rows, overwrite=request.overwrite)
        audit(AuditActionType.IMPORT_STUDENTS, session, "Students imported",
              f"{result.imported} imported, {result.skipped} skipped",
              imported=result.imported, skipped=result.skipped)
        return result.model_dump(mode="json")

    @app.post("/api/students/bulk-approve")
    async def bulk_approve(classroom: str = Query(...),
                           session: SessionIdentity = Depends(require_action(AdminAction.APPROVE_VOTING_RIGHTS))):
        count = services.students.bulk_approve_voting_rights(classroom, approved_by=session.identity)
        audit(AuditActionType.BULK_APPROVE_VOTING_RIGHTS, session, "Voting rights approved",
              f"{count} student(s) in {classroom}", classroom=classroom, count=count)
        return {"classroom": classroom, "count": count}

    @app.post("/api/students/bulk-revoke")
    async def bulk_revoke(classroom: str = Query(...),
                          session: SessionIdentity = Depends(require_action(AdminAction.APPROVE_VOTING_RIGHTS))):
        count = services.students.bulk_revoke_voting_rights(classroom)
        audit(AuditActionType.BULK_REVOKE_VOTING_RIGHTS, session, "Voting rights revoked",
              f"{count} student(s) in {classroom}", classroom=classroom, count=count)
        return {"classroom": classroom, "count": count}

    @app.put("/api/students/{student_id}")
    async def update_student(student_id: int, changes: Dict[str, Any],
                             session: SessionIdentity = Depends(require_action(AdminAction.MANAGE_STUDENTS))):
        result = services.students.edit_student(student_id, changes)
        if not result.success:
            status_code = 404 if result.error == "Student not found" else 400
            raise HTTPException(status_code=status_code, detail=result.error)
        student = result.student
        audit(AuditActionType.UPDATE_STUDENT, session, "Student updated", student.full_name, student_id=student_id)
        return student.model_dump(mode="json")

    @app.delete("/api/students/{student_id}")
    async def delete_student(student_id: int,
                             session: SessionIdentity = Depends(require_action(AdminAction.MANAGE_STUDENTS))):
        if not services.students.delete_student(student_id):
            raise HTTPException(status_code=404, detail="Student not found")
        audit(AuditActionType.DELETE_STUDENT, session, "Student deleted", str(student_id), student_id=student_id)
        return {"message": "Student deleted successfully"}

    @app.post("/api/students/{student_id}/approve")
    async def approve_student(student_id: int,
                              session: SessionIdentity = Depends(require_action(AdminAction.APPROVE_VOTING_RIGHTS))):
        student = services.students.approve_voting_right(student_id, approved_by=session.identity)
        if student is None:
            raise HTTPException(status_code=404, detail="Student not found")
        audit(AuditActionType.APPROVE_VOTING_RIGHT, session, "Voting right approved", student.full_name,
              student_id=student_id)
        return student.model_dump(mode="json")

    @app.post("/api/students/{student_id}/revoke")
    async def revoke_student(student_id: int,
                             session: SessionIdentity = Depends(require_action(AdminAction.APPROVE_VOTING_RIGHTS))):
        student = services.students.revoke_voting_right(student_id)
        if student is None:
            raise HTTPException(status_code=404, detail="Student not found")
        audit(AuditActionType.REVOKE_VOTING_RIGHT, session, "Voting right revoked", student.full_name,
              student_id=student_id)
        return student.model_dump(mode="json")

    # Elections

    @app.get("/api/elections")
    async def get_elections(session: SessionIdentity = Depends(require_page(Page.ELECTIONS))):
        return [e.model_dump(mode="json") for e in services.elections.get_all_elections()]

    @app.post("/api/elections")
    async def create_election(request: NewElection,
                              session: SessionIdentity = Depends(require_page(Page.ELECTIONS))):
        election = services.elections.create_election(request)
        services.display_settings.get_or_create_display_settings(
            election.id, [p.id for p in election.positions]
        )
        audit(AuditActionType.CREATE_ELECTION, session, "Election created", election.title,
              election_id=election.id)
        return election.model_dump(mode="json")

    @app.post("/api/elections/{election_id}/open")
    async def open_election(election_id: str, session: SessionIdentity = Depends(require_page(Page.ELECTIONS))):
        election = services.elections.open_election(election_id)
        if election is None:
            raise HTTPException(status_code=404, detail="Election not found")
        audit(AuditActionType.OPEN_ELECTION, session, "Election opened", election.title, election_id=election_id)
        return election.model_dump(mode="json")

    @app.post("/api/elections/{election_id}/close")
    async def close_election(election_id: str, session: SessionIdentity = Depends(require_page(Page.ELECTIONS))):
        election = services.elections.close_election(election_id)
        if election is None:
            raise HTTPException(status_code=404, detail="Election not found")
        audit(AuditActionType.CLOSE_ELECTION, session, "Election closed", election.title, election_id=election_id)
        return election.model_dump(mode="json")

    # Display settings

    def _display_for(election_id: str):
        election = services.elections.get_election(election_id)
        if election is None:
            raise HTTPException(status_code=404, detail="Election not found")
        return services.display_settings.get_or_create_display_settings(
            election_id, [p.id for p in election.positions]
        )

    @app.get("/api/elections/{election_id}/display-settings")
    async def get_display_settings(election_id: str,
                                   session: SessionIdentity = Depends(require_page(Page.RESULTS))):
        return _display_for(election_id).model_dump(mode="json")

    @app.put("/api/elections/{election_id}/display-settings")
    async def update_display_settings(election_id: str, request: DisplaySettingsUpdate,
                                      session: SessionIdentity = Depends(require_action(AdminAction.PUBLISH_RESULTS))):
        current = _display_for(election_id)
        raw_score = (current.global_show_raw_score if request.global_show_raw_score is None
                     else request.global_show_raw_score)
        winner_only = (current.global_show_winner_only if request.global_show_winner_only is None
                       else request.global_show_winner_only)
        if request.apply_to_all_positions:
            display = services.display_settings.apply_global_settings(election_id, raw_score, winner_only)
        else:
            display = services.display_settings.update_display_settings(election_id, {
                "global_show_raw_score": raw_score,
                "global_show_winner_only": winner_only,
            })
        return display.model_dump(mode="json")

    @app.put("/api/elections/{election_id}/display-settings/positions/{position_id}")
    async def update_position_config(election_id: str, position_id: str, request: PositionConfigUpdate,
                                     session: SessionIdentity = Depends(require_action(AdminAction.PUBLISH_RESULTS))):
        _display_for(election_id)
        changes = request.model_dump(exclude_none=True)
        display = services.display_settings.update_position_config(election_id, position_id, changes)
        return display.model_dump(mode="json")

    @app.post("/api/elections/{election_id}/publish")
    async def publish_results(election_id: str,
                              session: SessionIdentity = Depends(require_action(AdminAction.PUBLISH_RESULTS))):
        _display_for(election_id)
        display = services.display_settings.publish_results(election_id)
        audit(AuditActionType.PUBLISH_RESULTS, session, "Results published", election_id, election_id=election_id)
        return display.model_dump(mode="json")

    @app.post("/api/elections/{election_id}/unpublish")
    async def unpublish_results(election_id: str,
                                session: SessionIdentity = Depends(require_action(AdminAction.PUBLISH_RESULTS))):
        _display_for(election_id)
        display = services.display_settings.unpublish_results(election_id)
        audit(AuditActionType.UNPUBLISH_RESULTS, session, "Results unpublished", election_id,
              election_id=election_id)
        return display.model_dump(mode="json")

    # Public

    @app.get("/api/public/elections/{election_id}/visibility")
    async def results_visibility(election_id: str):
        decision = services.elections.results_visibility(election_id, services.display_settings)
        return decision.model_dump(mode="json")

    # Voting

    def require_student(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> int:
        session = decode_session_token(credentials.credentials, settings.jwt_secret) if credentials else None
        student_id = student_id_from_session(session)
        if student_id is None:
            raise HTTPException(status_code=401, detail="Please sign in before voting",
                                headers={"WWW-Authenticate": "Bearer"})
        return student_id

    @app.post("/api/student/login")
    async def student_login(credentials: StudentLogin):
        """Sign a student in with their student id and national id"""
        result = services.students.authenticate_student(credentials.student_id, credentials.national_id)
        if not result.success:
            raise HTTPException(status_code=401, detail=result.message)
        student = result.student
        return {
            "token": issue_student_token(student.id, settings.jwt_secret),
            "student": {
                "id": student.id,
                "name": student.name,
                "surname": student.surname,
                "classroom": student.classroom,
                "class_number": student.class_number,
            },
        }

    @app.post("/api/vote")
    async def submit_vote(ballot: BallotSubmission, student_id: int = Depends(require_student)):
        """Cast a ballot for the signed-in student and return its receipt token"""
        result = services.ballots.cast_vote(student_id, ballot.election_id, ballot.choices)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.message)
        return result.model_dump(mode="json")

    @app.post("/api/tokens/validate")
    async def validate_token(check: TokenCheck):
        """Structural check only; says nothing about whether the token was issued."""
        return {"valid": is_valid_token_format(normalize_token(check.token))}

    @app.post("/api/verify-vote")
    async def verify_vote(check: TokenCheck):
        """Verify that a vote was counted using its receipt token"""
        record = services.ballots.verify_vote_token(check.token)
        if record is None:
            raise HTTPException(status_code=404, detail="Invalid vote token")
        election = services.elections.get_election(record.election_id)
        return {
            "status": "verified",
            "election_id": record.election_id,
            "election_title": election.title if election else None,
            "voted_at": record.cast_at.isoformat(),
            "vote_counted": True,
        }

    # Admins

    @app.get("/api/admins")
    async def get_admins(session: SessionIdentity = Depends(require_action(AdminAction.VIEW_ADMIN_MANAGEMENT))):
        return [a.model_dump(mode="json") for a in services.admins.get_all_admins()]

    @app.post("/api/admins")
    async def create_admin(request: CreateAdminRequest, gate: SessionGate = Depends(get_gate)):
        decision = await gate.authorize_action(AdminAction.CREATE_ADMIN, request.access_level)
        session = decision.raise_for_denial()
        result = services.admins.create_admin(session.role, request.username, request.display_name,
                                              request.access_level)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        audit(AuditActionType.CREATE_ADMIN, session, "Admin created", result.admin.username,
              admin_id=result.admin.id)
        return result.model_dump(mode="json")

    @app.put("/api/admins/{admin_id}")
    async def update_admin(admin_id: int, changes: Dict[str, Any],
                           session: SessionIdentity = Depends(require_action(AdminAction.EDIT_ADMIN))):
        result = services.admins.update_admin(session.role, admin_id, changes)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        audit(AuditActionType.UPDATE_ADMIN, session, "Admin updated", result.admin.username, admin_id=admin_id)
        return result.model_dump(mode="json")

    @app.delete("/api/admins/{admin_id}")
    async def delete_admin(admin_id: int, gate: SessionGate = Depends(get_gate)):
        # Only callers who may see the admin list learn whether an id exists.
        (await gate.authorize_action(AdminAction.VIEW_ADMIN_MANAGEMENT)).raise_for_denial()
        target = services.admins.get_admin(admin_id)
        if target is None:
            raise HTTPException(status_code=404, detail="Admin not found")
        decision = await gate.authorize_action(AdminAction.DELETE_ADMIN, target.access_level)
        session = decision.raise_for_denial()
        result = services.admins.delete_admin(_actor_id(session), session.role, admin_id)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.error)
        audit(AuditActionType.DELETE_ADMIN, session, "Admin deleted", target.username, admin_id=admin_id)
        return {"message": "Admin deleted successfully"}

    # Audit trail

    @app.get("/api/audit-logs")
    async def get_audit_logs(limit: int = 100, session: SessionIdentity = Depends(require_page(Page.ACTIVITY))):
        """Get audit logs, newest first"""
        entries = services.audit.recent(limit)
        audit(AuditActionType.VIEW_AUDIT_LOG, session, "Audit log viewed")
        return [e.model_dump(mode="json") for e in entries]

    return app
