from __future__ import annotations

import typing as t

JsonDict = dict[str, t.Any]

VISUAL_TYPES = {
    "free_body_diagram": "Shows forces acting on objects",
    "projectile_motion": "Shows trajectory paths",
    "energy_diagram": "Shows energy transformations",
    "force_vectors": "Shows direction and magnitude of forces",
    "motion_diagram": "Shows position over time",
    "circuit_diagram": "For electrical problems",
    "wave_diagram": "For wave/oscillation problems",
}

DEFAULT_EXTRACTION_PROMPT = (
    "Extract the physics problem from this image. Include all numbers, units, and details. "
    "Describe any diagrams shown."
)

SOLUTION_SYSTEM_PROMPT = (
    "You are a physics tutor. Analyze the problem and provide a structured solution with clear steps.\n\n"
    "Focus on physics concepts like:\n"
    "- Forces and free body diagrams\n"
    "- Motion and kinematics\n"
    "- Energy conservation\n"
    "- Momentum\n"
    "- Electricity and magnetism\n"
    "- Waves and optics\n\n"
    "Provide step-by-step reasoning with formulas."
)

SOLUTION_SCHEMA: JsonDict = {
    "name": "physics_solution",
    "schema": {
        "type": "object",
        "properties": {
            "steps": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "title": {"type": "string"},
                        "explanation": {"type": "string"},
                        "formula": {"type": ["string", "null"]},
                    },
                    "required": ["title", "explanation", "formula"],
                    "additionalProperties": False,
                },
            },
            "final_answer": {"type": "string"},
        },
        "required": ["steps", "final_answer"],
        "additionalProperties": False,
    },
    "strict": True,
}

VISUALS_SYSTEM_PROMPT = (
    "You are a physics visualization expert. Analyze physics problems and identify what visual "
    "diagrams would help understand the problem.\n\n"
    "For each problem, suggest 1-3 relevant visualizations from these types:\n"
    + "".join(f"- {name}: {hint}\n" for name, hint in VISUAL_TYPES.items())
    + "\nBe specific about what should be shown in each diagram."
)

VISUALS_SCHEMA: JsonDict = {
    "name": "physics_visuals",
    "schema": {
        "type": "object",
        "properties": {
            "visuals": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "type": {"type": "string"},
                        "description": {"type": "string"},
                    },
                    "required": ["type", "description"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["visuals"],
        "additionalProperties": False,
    },
    "strict": True,
}

DIAGRAM_VIEWBOX = "0 0 400 300"
DIAGRAM_PALETTE = {
    "background": "#FAFBFC",
    "primary": "#5B9ED6",
    "secondary": "#FFB88C",
    "text": "#1E293B",
}

DIAGRAM_SYSTEM_PROMPT = (
    "You are a physics diagram generator. Generate SVG code for physics diagrams.\n\n"
    "Create accurate, educational diagrams like:\n"
    "- Free body diagrams with force vectors (arrows showing F, N, mg, etc.)\n"
    "- Projectile motion trajectories (parabolic paths with velocity vectors)\n"
    "- Energy bar charts (showing KE, PE, total energy)\n"
    "- Force diagrams (showing all forces with labels)\n"
    "- Motion diagrams (showing position at intervals)\n\n"
    "The SVG MUST be:\n"
    "- Valid SVG code starting with <svg> and ending with </svg>\n"
    f'- viewBox="{DIAGRAM_VIEWBOX}"\n'
    f"- Use these colors: background {DIAGRAM_PALETTE['background']}, primary blue {DIAGRAM_PALETTE['primary']}, "
    f"secondary orange {DIAGRAM_PALETTE['secondary']}, dark text {DIAGRAM_PALETTE['text']}\n"
    '- Include clear labels with font-family="system-ui, sans-serif"\n'
    "- Use arrow markers for force vectors\n"
    "- Be clean and educational\n\n"
    "Example structure for a free body diagram:\n"
    f'<svg viewBox="{DIAGRAM_VIEWBOX}" xmlns="http://www.w3.org/2000/svg">\n'
    "  <defs>\n"
    '    <marker id="arrow" markerWidth="10" markerHeight="10" refX="9" refY="3" orient="auto">\n'
    '      <path d="M0,0 L0,6 L9,3 z" fill="#5B9ED6"/>\n'
    "    </marker>\n"
    "  </defs>\n"
    '  <rect x="175" y="125" width="50" height="50" fill="#FFB88C" stroke="#1E293B" stroke-width="2" rx="4"/>\n'
    '  <line x1="200" y1="175" x2="200" y2="250" stroke="#5B9ED6" stroke-width="3" marker-end="url(#arrow)"/>\n'
    '  <text x="210" y="220" font-family="system-ui" font-size="14" fill="#1E293B">mg</text>\n'
    "</svg>"
)

DIAGRAM_SCHEMA: JsonDict = {
    "name": "svg_diagram",
    "schema": {
        "type": "object",
        "properties": {
            "svg": {"type": "string", "description": "Complete SVG code as a string"},
            "description": {"type": "string", "description": "Brief description of what the diagram shows"},
        },
        "required": ["svg", "description"],
        "additionalProperties": False,
    },
    "strict": True,
}

TUTOR_GUIDELINES = (
    "Guidelines:\n"
    "- Ask guiding questions to help students think through problems\n"
    "- Provide hints before giving full solutions\n"
    "- Explain physics concepts clearly with formulas and equations\n"
    "- Use analogies and real-world examples\n"
    "- Be encouraging and supportive\n"
    "- Break down complex ideas into simpler parts\n"
    "- Cover topics like mechanics, forces, energy, momentum, waves, electricity, magnetism, "
    "thermodynamics, and more"
)

EQUATION_FORMATTING_RULES = (
    "IMPORTANT - Equation formatting rules:\n"
    "- Write equations in simple text format, NOT LaTeX\n"
    "- Use ² for squared (v² not v^2)\n"
    "- Use ³ for cubed\n"
    "- Use ½ for one-half, ¼ for one-quarter\n"
    "- Use × for multiplication\n"
    "- Use √ for square root\n"
    "- Example: KE = ½mv² (not \\frac{1}{2}mv^2)\n"
    "- Example: E = mc² (not E = mc^2)\n"
    "- Example: F = ma\n"
    "- Example: a = Δv/Δt\n"
    "- Put equations on their own line for clarity"
)


def solution_user_prompt(problem_text: str) -> str:
    return f"Solve this physics problem step by step: {problem_text}"


def visuals_user_prompt(problem_text: str) -> str:
    return f"Analyze this physics problem and suggest appropriate visual diagrams: {problem_text}"


def diagram_user_prompt(problem_text: str, visual_type: str | None, description: str | None) -> str:
    prompt = f"Generate an SVG diagram for this physics problem: {problem_text}\n"
    if description:
        prompt += f"Visual type: {visual_type}\nDescription: {description}\n"
    prompt += "\nCreate a detailed diagram that visualizes the physics concepts clearly."
    return prompt


def tutor_system_prompt(problem_text: str | None) -> str:
    context = f"The student is working on this problem: {problem_text}" if problem_text else ""
    return (
        "You are a helpful physics tutor. Your goal is to help students understand physics concepts, "
        "not just give them answers. Use the Socratic method when appropriate.\n\n"
        f"{context}\n\n"
        f"{TUTOR_GUIDELINES}\n\n"
        f"{EQUATION_FORMATTING_RULES}"
    )
