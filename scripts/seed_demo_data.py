from decimal import Decimal

from sqlalchemy import select

from src.infrastructure.db.models import Base, Property, RoomType, User
from src.infrastructure.db.session import engine, get_db_session


def seed_users(db) -> None:
    user_defs = [
        {"full_name": "Ama Mensah", "email": "ama@example.com", "phone_number": None},
        {"full_name": "Kofi Boateng", "email": "kofi@example.com", "phone_number": "+233200000001"},
    ]

    for item in user_defs:
        existing = db.execute(
            select(User).where(User.email == item["email"])
        ).scalar_one_or_none()
        if existing:
            existing.full_name = item["full_name"]
            continue
        db.add(User(**item))


def seed_properties(db) -> None:
    property_defs = [
        {
            "name": "Legon Heights Hostel",
            "location": "East Legon, Accra",
            "city": "Accra",
            "room_types": [
                {"name": "Single Room", "price": Decimal("1500.00"), "capacity": 1, "total_rooms": 20},
                {"name": "Shared Room (2 in 1)", "price": Decimal("900.00"), "capacity": 2, "total_rooms": 35},
            ],
        },
        {
            "name": "Kumasi Garden Homestay",
            "location": "Ahodwo, Kumasi",
            "city": "Kumasi",
            "room_types": [
                {"name": "Deluxe Suite", "price": Decimal("650.00"), "capacity": 2, "total_rooms": 6},
            ],
        },
    ]

    for item in property_defs:
        property_ = db.execute(
            select(Property).where(Property.name == item["name"])
        ).scalar_one_or_none()
        if property_ is None:
            property_ = Property(
                name=item["name"],
                location=item["location"],
                city=item["city"],
            )
            db.add(property_)
            db.flush()

        for room in item["room_types"]:
            existing = db.execute(
                select(RoomType)
                .where(RoomType.property_id == property_.id)
                .where(RoomType.name == room["name"])
            ).scalar_one_or_none()
            if existing:
                # Only price and capacity are reset; counters belong to bookings.
                existing.price = room["price"]
                existing.capacity = room["capacity"]
                continue

            db.add(
                RoomType(
                    property_id=property_.id,
                    name=room["name"],
                    price=room["price"],
                    currency="GHS",
                    capacity=room["capacity"],
                    total_rooms=room["total_rooms"],
                    available_rooms=room["total_rooms"],
                )
            )


def main() -> None:
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_users(db)
        seed_properties(db)
    print("Seed complete: demo users, Legon Heights Hostel, Kumasi Garden Homestay added.")


if __name__ == "__main__":
    main()
