from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.exceptions import RequestValidationError
from sqlalchemy.orm import Session

from cycletrac.db import get_db
from cycletrac.models.ride import Ride
from cycletrac.models.user import User
from cycletrac.schemas.ride import RideBase, RideCreate, RideRead, RideReplace

router = APIRouter(prefix="/rides", tags=["rides"])


def _ride_columns(payload: RideBase, db: Session) -> dict:
    """Validate references and flatten a payload into column values."""
    if payload.user_id is not None:
        if db.query(User).filter(User.id == payload.user_id).first() is None:
            raise RequestValidationError(
                [{
                    "type": "value_error",
                    "loc": ("body", "user_id"),
                    "msg": f"User {payload.user_id} does not exist",
                    "input": payload.user_id,
                }]
            )
    data = payload.model_dump(exclude={"route_data"})
    data["route_data"] = payload.route_data.model_dump(mode="json")
    return data


@router.post("", response_model=RideRead, status_code=201)
def create_ride(payload: RideCreate, db: Session = Depends(get_db)):
    ride = Ride(**_ride_columns(payload, db))
    db.add(ride)
    db.commit()
    db.refresh(ride)
    return ride


@router.get("", response_model=list[RideRead])
def list_rides(
    user_id: int = Query(..., alias="userId"),
    db: Session = Depends(get_db),
):
    """
    List every ride owned by a user, oldest first.

      GET /rides?userId=3
    """
    return (
        db.query(Ride)
        .filter(Ride.user_id == user_id)
        .order_by(Ride.start_time)
        .all()
    )


@router.get("/{ride_id}", response_model=RideRead)
def get_ride(ride_id: int, db: Session = Depends(get_db)):
    ride = db.query(Ride).filter(Ride.id == ride_id).first()
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    return ride


@router.put("/{ride_id}", response_model=RideRead)
def replace_ride(ride_id: int, payload: RideReplace, db: Session = Depends(get_db)):
    ride = db.query(Ride).filter(Ride.id == ride_id).first()
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")

    for key, value in _ride_columns(payload, db).items():
        setattr(ride, key, value)

    db.commit()
    db.refresh(ride)
    return ride


@router.delete("/{ride_id}", status_code=204)
def delete_ride(ride_id: int, db: Session = Depends(get_db)):
    ride = db.query(Ride).filter(Ride.id == ride_id).first()
    if not ride:
        raise HTTPException(status_code=404, detail="Ride not found")
    db.delete(ride)
    db.commit()
    return Response(status_code=204)
