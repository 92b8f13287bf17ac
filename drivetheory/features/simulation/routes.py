from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from drivetheory.core.database import get_db
from drivetheory.core.dependencies import get_current_user
from drivetheory.features.user.model import User
from drivetheory.features.simulation.model import ExamSimulation
from drivetheory.features.simulation.schema import (
    ActiveCheckResponse, Heartbeat, RecoverRequest, SimulationAdvance, SimulationAnswer,
    SimulationAnswerResult, SimulationCreate, SimulationLogResponse, SimulationResponse,
)
from drivetheory.features.simulation.service import SimulationService

router = APIRouter()

def _get_owned_simulation(db: Session, simulation_id: int, current_user: User) -> ExamSimulation:
    simulation = SimulationService.get_simulation_by_id(db, simulation_id)
    if not simulation:
        raise HTTPException(status_code=404, detail="Simulation not found")
    if simulation.user_id != current_user.id:
        raise HTTPException(status_code=403, detail="You do not have access to this simulation")
    return simulation

@router.post("", response_model=SimulationResponse, status_code=status.HTTP_201_CREATED)
def start_simulation(
    config: SimulationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Start a practice simulation"""
    return SimulationService.start_simulation(db, current_user.id, config)

@router.get("", response_model=List[SimulationResponse])
def get_my_simulations(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return SimulationService.get_user_simulations(db, current_user.id)

@router.get("/active", response_model=SimulationResponse)
def get_active_simulation(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = SimulationService.get_active_simulation(db, current_user.id)
    if not simulation:
        raise HTTPException(status_code=404, detail="No active simulation found")
    return simulation

@router.get("/active/check", response_model=ActiveCheckResponse)
def check_active_simulation(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Whether a resumable simulation exists, with its recovery token"""
    return SimulationService.active_check(db, current_user.id)

@router.post("/recover", response_model=SimulationResponse)
def recover_simulation(
    recover_data: RecoverRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Resume after a disconnect; the returned token replaces the old one"""
    return SimulationService.recover(db, current_user.id, recover_data.recovery_token)

@router.get("/{simulation_id}", response_model=SimulationResponse)
def get_simulation(
    simulation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _get_owned_simulation(db, simulation_id, current_user)

@router.get("/{simulation_id}/logs", response_model=List[SimulationLogResponse])
def get_simulation_logs(
    simulation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = _get_owned_simulation(db, simulation_id, current_user)
    return SimulationService.get_logs(db, simulation.id)

@router.post("/{simulation_id}/answer", response_model=SimulationAnswerResult)
def answer_question(
    simulation_id: int,
    answer_data: SimulationAnswer,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = _get_owned_simulation(db, simulation_id, current_user)
    return SimulationService.answer_question(
        db, simulation, answer_data.question_id, answer_data.answer, answer_data.time_spent
    )

@router.post("/{simulation_id}/advance", response_model=SimulationResponse)
def advance_simulation(
    simulation_id: int,
    advance_data: SimulationAdvance,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = _get_owned_simulation(db, simulation_id, current_user)
    return SimulationService.advance(db, simulation, advance_data.timed_out)

@router.post("/{simulation_id}/complete", response_model=SimulationResponse)
def complete_simulation(
    simulation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = _get_owned_simulation(db, simulation_id, current_user)
    return SimulationService.complete(db, simulation)

@router.post("/{simulation_id}/heartbeat", response_model=SimulationResponse)
def simulation_heartbeat(
    simulation_id: int,
    heartbeat_data: Heartbeat,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    simulation = _get_owned_simulation(db, simulation_id, current_user)
    return SimulationService.heartbeat(
        db, simulation, heartbeat_data.recovery_token, heartbeat_data.time_remaining
    )
