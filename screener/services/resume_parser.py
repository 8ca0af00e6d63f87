import io
import os
import re
import logging
from typing import List, Optional

import PyPDF2
import docx

from screener.core.exceptions import DependencyError, ValidationError
from screener.schemas.screening import ParsedResume

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.pdf', '.docx', '.txt'}

# Known skills looked up anywhere in the resume text
SKILL_VOCABULARY = [
    "Python", "Java", "JavaScript", "TypeScript", "Go", "Rust", "C++", "C#", "Ruby", "PHP",
    "Kotlin", "Swift", "Scala", "SQL", "PostgreSQL", "MySQL", "MongoDB", "Redis",
    "React", "Angular", "Vue", "Svelte", "Node.js", "Express", "Django", "Flask", "FastAPI",
    "Spring", "GraphQL", "REST", "Docker", "Kubernetes", "Terraform", "AWS", "Azure", "GCP",
    "Linux", "Git", "CI/CD", "Kafka", "Spark", "Pandas", "NumPy", "TensorFlow", "PyTorch",
    "Machine Learning", "HTML", "CSS", "Figma", "Agile", "Scrum",
]

SKILLS_HEADING = re.compile(r'^\s*(technical\s+)?skills\s*[:\-]?\s*(.*)$', re.IGNORECASE)
SECTION_HEADING = re.compile(r'^\s*[A-Z][A-Za-z ]{2,30}:?\s*$')
EXPERIENCE_YEARS = re.compile(r'(?<![\d.])(\d{1,2}(?:\.\d)?)\s*\+?\s*(?:years?|yrs?)\b', re.IGNORECASE)
EMAIL = re.compile(r'[\w\.-]+@[\w\.-]+\.\w+')
MAX_PLAUSIBLE_YEARS = 50


def validate_filename(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise ValidationError(
            f"File type {ext or '(none)'} not allowed. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            details={"filename": filename},
        )
    return ext


def extract_text(buffer: bytes, file_type: str) -> str:
    """Extract text from an uploaded resume based on type."""
    text = ""
    try:
        if file_type == '.pdf':
            pdf_reader = PyPDF2.PdfReader(io.BytesIO(buffer))
            for page in pdf_reader.pages:
                text += (page.extract_text() or "") + "\n"

        elif file_type == '.docx':
            doc = docx.Document(io.BytesIO(buffer))
            for paragraph in doc.paragraphs:
                text += paragraph.text + "\n"

        else:
            text = buffer.decode('utf-8', errors='ignore')

        return text.strip()
    except Exception as e:
        logger.error(f"Error extracting text ({file_type}): {e}")
        raise DependencyError("Resume text extraction failed") from e


def _skills_section(text: str) -> List[str]:
    """Comma/pipe/bullet separated entries under a 'Skills' heading."""
    found = []
    lines = text.splitlines()
    for i, line in enumerate(lines):
        match = SKILLS_HEADING.match(line)
        if not match:
            continue
        block = [match.group(2)]
        for follow in lines[i + 1:i + 6]:
            if not follow.strip() or SECTION_HEADING.match(follow):
                break
            block.append(follow)
        for entry in re.split(r'[,|•;\n]', "\n".join(block)):
            entry = entry.strip(" -*\t")
            if 1 < len(entry) <= 40:
                found.append(entry)
    return found


def extract_skills(text: str) -> List[str]:
    skills = _skills_section(text)
    for skill in SKILL_VOCABULARY:
        pattern = r'(?<![\w+#.])' + re.escape(skill) + r'(?![\w+#])'
        # Short names ("Go", "REST") collide with plain English, so match them case-sensitively
        flags = re.IGNORECASE if len(skill) > 4 else 0
        if re.search(pattern, text, flags):
            skills.append(skill)

    seen = set()
    unique = []
    for skill in skills:
        if skill.lower() not in seen:
            seen.add(skill.lower())
            unique.append(skill)
    return unique


def extract_experience_years(text: str) -> float:
    years = [float(y) for y in EXPERIENCE_YEARS.findall(text)]
    years = [y for y in years if y <= MAX_PLAUSIBLE_YEARS]
    return max(years) if years else 0.0


def extract_email(text: str) -> Optional[str]:
    match = EMAIL.search(text)
    return match.group().lower() if match else None


class ResumeParser:
    """Turns an uploaded resume into skills, experience and full text."""

    def parse(self, buffer: bytes, filename: str) -> ParsedResume:
        file_type = validate_filename(filename)
        text = extract_text(buffer, file_type)
        if not text:
            logger.warning(f"No text extracted from {filename}")

        parsed = ParsedResume(
            skills=extract_skills(text),
            experience_years=extract_experience_years(text),
            full_text=text,
            email=extract_email(text),
        )
        logger.info(f"Parsed {filename}: {len(parsed.skills)} skills, {parsed.experience_years} years")
        return parsed
