"""
Static fallback text used when text generation is exhausted.

Every function here is pure and deterministic: the same inputs always give the
same text, so sessions stay reproducible when both backends are down.
"""

from ..harness.session import UserContext

MODERATION_MESSAGE = (
    "Let's hear quick insights from each expert. "
    "Please keep suggestions focused and concise."
)

PLANNING_PROMPT_MESSAGE = (
    "Thanks, everyone. Before the experts write up their implementation plans: "
    "any final thoughts or requirements you'd like them to consider?"
)

FALLBACK_PLAN_FOOTER = "*This is a fallback plan generated when AI services were unavailable.*"

EXPERT_POOLS: dict[str, list[str]] = {
    "frontend-specialist": [
        "Consider React with TypeScript for {project}. Focus on mobile-first design "
        "with a clean component architecture.",
        "A design system built on Tailwind CSS could speed up development. "
        "Prioritize the core user flows first.",
        "Next.js might work well if SEO and initial load performance matter.",
    ],
    "backend-specialist": [
        "Node.js with Express could handle the backend for {project}. "
        "Focus on secure API design with JWT authentication.",
        "Consider microservices only if scaling is a priority. "
        "Docker containers would keep deployment consistent.",
        "GraphQL might fit if data relationships are complex, otherwise a REST API is simpler.",
    ],
    "database-specialist": [
        "PostgreSQL would be a solid default for {project}. "
        "Model the core entities first and index the hot query paths.",
        "Redis could cache frequently read data. "
        "Plan migrations from day one so the schema can evolve safely.",
    ],
    "security-specialist": [
        "Security for {project} should start with strong authentication and "
        "encrypted storage of sensitive data.",
        "Validate every input at the API boundary and keep secrets out of the codebase. "
        "Rate limiting protects the login and payment flows.",
    ],
    "system-architect": [
        "For {project}, a modular monolith is the simplest starting point. "
        "Keep clear boundaries between UI, business logic and data.",
        "An event-driven design can come later if traffic grows. "
        "Docker keeps environments reproducible from the start.",
    ],
    "devops-specialist": [
        "Set up CI/CD for {project} early so every change is tested and deployable. "
        "Docker images keep builds consistent.",
        "Start with a managed platform and add Kubernetes only when scale demands it. "
        "Add monitoring and alerting before launch.",
    ],
    "mobile-specialist": [
        "React Native could cover iOS and Android for {project} from one codebase. "
        "Design for offline use and flaky networks.",
        "Keep the mobile app thin and push logic to the API. "
        "Biometric login would make repeat visits fast.",
    ],
    "ai-specialist": [
        "Python is the natural fit for AI features in {project}. "
        "Start with a hosted model API before training anything custom.",
        "Collect labelled data from real usage early. "
        "Measure model quality with a small evaluation set before each release.",
    ],
}

GENERIC_POOL = [
    "For {project}, I recommend proven architectural patterns for this domain.",
    "Looking at {project}, we should plan for scalability and maintainability from the start.",
    "{project} would benefit from careful technology selection and modern development practices.",
]

DISCOVERY_OPENERS = {
    "ecommerce": (
        "I can see you're building an e-commerce platform. To assemble the right expert "
        "team, are you targeting consumers, businesses, or creating a marketplace?"
    ),
    "mobile": (
        "A mobile application, great. To bring in the right experts: are you thinking "
        "iOS, Android or cross-platform, and is it a consumer or enterprise app?"
    ),
    "web": (
        "Web projects have many possibilities. Is this a marketing website, a web "
        "application, or a larger platform?"
    ),
    "api": (
        "Backend and API work is the foundation of great products. What will this API "
        "power: internal tools, third-party integrations, or public developer use?"
    ),
    "ai": (
        "AI projects are exciting right now. Are you adding AI features to an existing "
        "product, or building an AI-first solution?"
    ),
    "data": (
        "Data and analytics projects can transform how a business operates. Are you "
        "building internal dashboards, customer-facing analytics, or data pipelines?"
    ),
    "general": (
        "I'm excited to help bring your idea to life. What's the main problem you're "
        "solving, and who will benefit from it?"
    ),
}

TEAM_MIX = {
    "ecommerce": "storefront, payments and security",
    "mobile": "mobile, API and user experience",
    "web": "frontend, architecture and performance",
    "api": "backend, data and API design",
    "ai": "machine learning, data and architecture",
    "data": "data engineering, analytics and visualization",
    "general": "architecture, delivery and domain",
}


def _project(context: UserContext) -> str:
    return context.project_description.strip() or "this project"


def expert_message(expert_id: str, round_number: int, context: UserContext) -> str:
    """Pool entry for (expert, round); rounds cycle through the pool."""
    pool = EXPERT_POOLS.get(expert_id, GENERIC_POOL)
    index = (max(round_number, 1) - 1) % len(pool)
    return pool[index].format(project=_project(context))


def expert_acknowledgement(expert_name: str) -> str:
    return (
        "Thank you for that clarification. That helps inform my recommendations "
        f"for the {expert_name.lower()} aspects of your project."
    )


def expert_plan(expert_name: str, expert_id: str, context: UserContext) -> str:
    return (
        f"## {expert_name} Implementation Plan\n\n"
        f"### Technology Approach\n"
        f"Modern, proven technologies appropriate for {_project(context)}\n\n"
        f"### Key Features\n"
        f"Core functionality aligned with project requirements and user needs\n\n"
        f"### Timeline\n"
        f"{context.timeline or 'A realistic schedule considering scope and constraints'}\n\n"
        f"### Risk Mitigation\n"
        f"Standard risk assessment and mitigation for the {expert_id} domain\n\n"
        f"{FALLBACK_PLAN_FOOTER}"
    )


def orchestrator_message(response_type: str, project_type: str, team_names: list[str] | None = None) -> str:
    """Contextual orchestrator text by response type and detected project type."""
    if response_type == "initial_discovery":
        return DISCOVERY_OPENERS.get(project_type, DISCOVERY_OPENERS["general"])
    if response_type == "discovery_followup":
        return (
            f"Thank you, that helps. I'm mapping out the key challenges for this "
            f"{project_type} project. One more question: what's your biggest concern "
            f"going forward: timeline, technical complexity, scalability, or budget?"
        )
    if response_type == "team_assembly":
        names = ", ".join(team_names) if team_names else TEAM_MIX.get(project_type, TEAM_MIX["general"])
        return (
            f"Based on our discussion, I'm assembling an expert team for your "
            f"{project_type} project: {names}. You'll see them collaborate in "
            f"real time, building on each other's insights."
        )
    if response_type == "consensus":
        return "The experts have reached consensus on the core technical approach."
    if response_type == "planning_prompt":
        return PLANNING_PROMPT_MESSAGE
    return (
        f"I'm here to help guide your {project_type} project forward. Which aspect "
        f"would you like to focus on first: architecture, user experience, or "
        f"implementation strategy?"
    )
