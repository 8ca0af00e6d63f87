from screener.database import SessionLocal, init_db
from screener.models.job import Job

init_db()
db = SessionLocal()

def create_job(title, required_skills, nice_to_have_skills, years, strengths, description):
    # Check if the job already exists to keep the script re-runnable
    existing_job = db.query(Job).filter(Job.title == title).first()
    if existing_job:
        print(f"Job '{title}' already exists (id={existing_job.id}). Skipping.")
        return

    job = Job(
        title=title,
        description=description,
        required_skills=required_skills,
        nice_to_have_skills=nice_to_have_skills,
        experience_required_years=years,
        strengths_expected=strengths,
        is_active=True
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    print(f"Created job {job.id} -> {title}")

create_job(
    "Backend Engineer",
    ["Python", "PostgreSQL", "Docker"],
    ["Kubernetes", "Redis"],
    3,
    ["communication", "ownership"],
    "Build and operate the APIs behind our job portal."
)

create_job(
    "Frontend Engineer",
    ["JavaScript", "React", "CSS"],
    ["TypeScript", "Figma"],
    2,
    ["attention to detail"],
    "Own the employer dashboard and candidate flows."
)

db.close()
