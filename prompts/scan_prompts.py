# QuizMaster - Prompt Templates
# Used by quizmaster/gateway.py. The output contract (four JSON fields) is the
# same for every mode; only the instructions and the number of images change.

# ─────────────────────────────────────────────────────────
# EXTRACTION MODE (paper already marked by hand)
# ─────────────────────────────────────────────────────────

EXTRACT_PROMPT = """Extract the student name, score, total marks, and subject from this quiz paper.

CRITICAL:
- If the 'total marks' are not explicitly written, you MUST calculate the total
  by summing the max points of all visible questions.
- If the score is missing, count the ticks/marks.

Return raw JSON with keys: studentName, score, totalMarks, subject.
"""


# ─────────────────────────────────────────────────────────
# GRADING MODE: WITH REFERENCE (answer key supplied first)
# ─────────────────────────────────────────────────────────

ANSWER_KEY_LABEL = "This is the ANSWER KEY."

REFERENCE_GRADING_PROMPT = """This is the STUDENT ANSWER SHEET.

TASK: Grade the student paper against the answer key.

CRITICAL STEPS:
1. Identify the Student Name and Subject.
2. Compare every answer on the student sheet with the key.
3. Count the points for correct answers to get the 'score'.
4. IMPORTANT: Calculate 'totalMarks' by summing the points of ALL questions on
   the quiz (even if the student got them wrong or left them blank).

OUTPUT:
Return a purely JSON object with keys: studentName, score, totalMarks, subject.
"""


# ─────────────────────────────────────────────────────────
# GRADING MODE: WITHOUT REFERENCE (service's own knowledge)
# ─────────────────────────────────────────────────────────

KNOWLEDGE_GRADING_PROMPT = """This is a STUDENT QUIZ PAPER.

TASK: Auto-grade this quiz based on your general knowledge.

CRITICAL STEPS:
1. Read the questions and the student's handwritten answers.
2. Verify if answers are correct.
3. Calculate 'score' by summing points for correct answers.
4. IMPORTANT: Calculate 'totalMarks' by summing the max points of ALL visible
   questions (even if the student got them wrong or left them blank).
5. Extract Student Name and Subject.

OUTPUT:
Return a purely JSON object with keys: studentName, score, totalMarks, subject.
"""


# ─────────────────────────────────────────────────────────
# SYSTEM INSTRUCTION (shared)
# ─────────────────────────────────────────────────────────

SYSTEM_PROMPT = (
    "You are a careful teaching assistant reading photographed quiz papers. "
    "Always respond with valid JSON only. No markdown fences, no extra text."
)
