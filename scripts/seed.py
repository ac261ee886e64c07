"""Seed a local Nearhand server with neighbours and tasks around Paris.

Usage:
    # Start server with relaxed rate limits for seeding:
    NEARHAND_RATE_LIMIT_REGISTER="100/minute" uvicorn nearhand.main:app --port 8000

    # Then seed:
    python scripts/seed.py                          # localhost:8000
    python scripts/seed.py https://staging.example  # another server
"""

from __future__ import annotations

import asyncio
import random
import sys

import httpx

BASE = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"

PEOPLE = ["Camille", "Noa", "Sacha", "Lou", "Yanis", "Inès", "Malo", "Jade"]

# (lat, lng) spots within a few km of the centre of Paris
SPOTS = [
    (48.8566, 2.3522),
    (48.8647, 2.3490),
    (48.8530, 2.3499),
    (48.8606, 2.3376),
    (48.8462, 2.3464),
    (48.8738, 2.2950),
    (48.8867, 2.3431),
    (48.8349, 2.3708),
]

TASKS = [
    {"title": "Water my balcony plants", "category": "gardening", "budget": "15", "tags": ["plants"]},
    {"title": "Assemble an IKEA wardrobe", "category": "handyman", "budget": "60", "tags": ["furniture"]},
    {"title": "Carry boxes to the 5th floor", "category": "moving", "budget": "40", "is_urgent": True},
    {"title": "Walk the dog at lunchtime", "category": "petcare", "budget": "12", "tags": ["dog"]},
    {"title": "Pick up groceries at the market", "category": "shopping", "budget": "10"},
    {"title": "Fix a leaking kitchen tap", "category": "handyman", "budget": "35", "priority": "high"},
    {"title": "Maths homework help, 4e", "category": "tutoring", "budget": "25", "tags": ["maths"]},
    {"title": "Set up a new router", "category": "tech", "budget": "30", "tags": ["wifi"]},
    {"title": "Deep clean a studio flat", "category": "cleaning", "budget": "70"},
    {"title": "Deliver a parcel across town", "category": "delivery", "budget": "18"},
]


async def main():
    json_headers = {"Accept": "application/json", "Content-Type": "application/json"}
    async with httpx.AsyncClient(base_url=BASE, timeout=30, headers=json_headers) as client:
        people: list[dict] = []
        for name in PEOPLE:
            resp = await client.post("/v1/register", json={"name": name})
            if resp.status_code != 201:
                print(f"  FAILED {name}: {resp.status_code} {resp.text[:100]}")
                continue
            person = {"name": name, **resp.json()}
            headers = {"Authorization": f"Bearer {person['api_key']}"}
            lat, lng = random.choice(SPOTS)
            await client.put("/v1/me/location", json={"lat": lat, "lng": lng}, headers=headers)
            people.append(person)
            print(f"  registered {name:10s} → {person['profile_id']}")

        if len(people) < 2:
            print("Not enough people registered, aborting.")
            return

        print(f"\n--- Posting {len(TASKS)} tasks ---\n")

        posted: list[dict] = []
        for spec in TASKS:
            author = random.choice(people)
            lat, lng = random.choice(SPOTS)
            body = {
                "description": f"{spec['title']}. Details when we meet.",
                "latitude": lat + random.uniform(-0.005, 0.005),
                "longitude": lng + random.uniform(-0.005, 0.005),
                **spec,
            }
            headers = {"Authorization": f"Bearer {author['api_key']}"}
            resp = await client.post("/v1/tasks", json=body, headers=headers)
            if resp.status_code != 201:
                print(f"  FAILED posting: {resp.status_code} {resp.text[:100]}")
                continue
            task = resp.json()
            posted.append({"id": task["task_id"], "author": author})
            print(f"  posted {task['task_id']}  {spec['budget']:>3s} EUR  {spec['title']}")

        print("\n--- Simulating activity ---\n")

        # Helpers apply to about 70% of tasks; half of those get assigned
        for task in posted[: int(len(posted) * 0.7)]:
            helpers = [p for p in people if p["profile_id"] != task["author"]["profile_id"]]
            applications = []
            for helper in random.sample(helpers, k=min(3, len(helpers))):
                headers = {"Authorization": f"Bearer {helper['api_key']}"}
                resp = await client.post(
                    f"/v1/tasks/{task['id']}/apply",
                    json={"message": f"Hi, {helper['name']} here, I can do it."},
                    headers=headers,
                )
                if resp.status_code == 201:
                    applications.append((helper, resp.json()))
            print(f"  {task['id']}: {len(applications)} applications")

            if not applications or random.random() < 0.5:
                continue
            helper, application = random.choice(applications)
            author_headers = {"Authorization": f"Bearer {task['author']['api_key']}"}
            resp = await client.post(
                f"/v1/tasks/{task['id']}/applications/{application['application_id']}/accept",
                headers=author_headers,
            )
            if resp.status_code != 200:
                continue
            print(f"  {task['id']}: assigned to {helper['name']}")

            if random.random() < 0.5:
                helper_headers = {"Authorization": f"Bearer {helper['api_key']}"}
                await client.post(f"/v1/tasks/{task['id']}/start", headers=helper_headers)
                await client.post(f"/v1/tasks/{task['id']}/complete", headers=author_headers)
                print(f"  {task['id']}: completed")

        print(f"\nDone: {len(people)} people, {len(posted)} tasks.")


if __name__ == "__main__":
    asyncio.run(main())
