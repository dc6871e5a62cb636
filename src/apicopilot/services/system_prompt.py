from __future__ import annotations

import textwrap
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from apicopilot.models.tool_model import ToolDefinition


ROLE_DESCRIPTIONS: Dict[str, str] = {
    "ADMIN": "System administrator - full access to every feature",
    "PARTNER_ADMIN": "Partner administrator - manages a store and its team",
    "PARTNER_USER": "Partner user - day-to-day store operations",
    "PROMOTER": "Promoter - referrals and commissions",
    "PARTNER_PROMOTER": "Partner promoter - sales for a specific partner",
    "CUSTOMER": "Customer - purchases and orders",
}

ROLE_INSTRUCTIONS: Dict[str, str] = {
    "ADMIN": "As an administrator the user can reach every feature. Prioritise monitoring and platform-wide management.",
    "PARTNER_ADMIN": "Focus on the user's own store: products, orders, promoters and sales reports.",
    "PARTNER_USER": "Focus on daily operations: managing products, processing orders and customer service.",
    "PROMOTER": "Help with referrals, commission tracking and managing the contact network.",
    "CUSTOMER": "Make shopping easy: product search, orders and delivery tracking.",
}

PAGE_INSTRUCTIONS: Dict[str, str] = {
    "/dashboard": "The user is on the dashboard. Prioritise metrics, summaries and quick actions.",
    "/products": "Focus on product operations: search, creation, editing and stock management.",
    "/orders": "Prioritise order operations: status, processing and logistics.",
    "/customers": "Focus on customer management: records, history and relationship.",
    "/promoters": "Focus on the promoter network: sign-ups, commissions and performance.",
}

# (category, path fragments, name fragments); first match wins, "System" catches the rest.
TOOL_CATEGORIES = (
    ("Products", ("/products",), ("product",)),
    ("Orders", ("/orders",), ("order",)),
    ("Users", ("/users", "/customers"), ("user", "customer")),
    ("Partners", ("/partners",), ("partner",)),
    ("Payments", ("/payment",), ("payment",)),
    ("Reports", ("/dashboard", "/admin"), ("report", "dashboard")),
)
FALLBACK_CATEGORY = "System"

PRODUCT_ANALYSIS_PROMPT = textwrap.dedent(
    """\
    You are analysing marketplace products. Consider:

    ### Quality criteria
    - Condition (new, like new, used)
    - Brand authenticity
    - Price relative to the market
    - Photo quality
    - Completeness of the description

    ### Categorisation
    - Identify the category automatically
    - Suggest relevant tags
    - Determine the target audience
    - Estimate sales potential

    ### Optimisations
    - Improve titles for search
    - Suggest competitive prices
    - Recommend additional photos
    - Propose more persuasive descriptions"""
)

CUSTOMER_SERVICE_PROMPT = textwrap.dedent(
    """\
    You are in customer-service mode:

    ### Tone
    - Always courteous and professional
    - Empathetic with reported problems
    - Proactive about offering solutions

    ### Procedure
    1. Identify the problem or need
    2. Look the information up in the system
    3. Present clear solutions
    4. Follow the resolution through

    ### Common questions
    - Order and delivery status
    - Problems with received products
    - Exchanges and returns
    - Platform technical support"""
)


class PromptContext(BaseModel):
    user_role: str = "CUSTOMER"
    partner_id: Optional[str] = None
    current_page: Optional[str] = None
    available_tools: Sequence[ToolDefinition] = Field(default_factory=list)


class PromptInfo(BaseModel):
    name: str
    description: str


def role_description(role: str) -> str:
    return ROLE_DESCRIPTIONS.get(role, f"Role: {role}")


def categorize_tool(tool: ToolDefinition) -> str:
    path = tool.binding.path.lower()
    name = tool.name.lower()
    for category, path_parts, name_parts in TOOL_CATEGORIES:
        if any(p in path for p in path_parts) or any(n in name for n in name_parts):
            return category
    return FALLBACK_CATEGORY


def group_tools_by_category(tools: Sequence[ToolDefinition]) -> Dict[str, List[ToolDefinition]]:
    order = [c for c, _, _ in TOOL_CATEGORIES] + [FALLBACK_CATEGORY]
    grouped: Dict[str, List[ToolDefinition]] = {c: [] for c in order}
    for tool in tools:
        grouped[categorize_tool(tool)].append(tool)
    return {c: ts for c, ts in grouped.items() if ts}


def build_tools_list(tools: Sequence[ToolDefinition]) -> str:
    if not tools:
        return "*(No tools are available right now)*"

    lines: List[str] = []
    for category, category_tools in group_tools_by_category(tools).items():
        lines.append(f"\n### {category}")
        for tool in category_tools:
            lines.append(f"- **{tool.name}**: {tool.description.splitlines()[0]}")
    return "\n".join(lines)


def contextual_instructions(role: str, current_page: Optional[str]) -> str:
    instructions = []
    if role in ROLE_INSTRUCTIONS:
        instructions.append(ROLE_INSTRUCTIONS[role])
    if current_page and current_page.lower() in PAGE_INSTRUCTIONS:
        instructions.append(PAGE_INSTRUCTIONS[current_page.lower()])
    return " ".join(instructions)


class SystemPrompts:
    def build_system_prompt(self, context: Optional[PromptContext] = None) -> str:
        context = context or PromptContext()
        tools = list(context.available_tools)

        sections = [
            "You are the assistant of a second-hand fashion marketplace that connects partner "
            "stores, promoters and customers.",
            "## YOUR ROLE\n"
            "You can help with e-commerce operations (products, orders, stock), manage users, "
            "partners and promoters, produce reports, configure stores and follow payments and "
            "commissions by calling the API tools below.",
            "## CURRENT USER\n"
            f"- **Role**: {role_description(context.user_role)}\n"
            f"- **Partner ID**: {context.partner_id or 'Not applicable'}\n"
            f"- **Current page**: {context.current_page or 'Not specified'}",
            f"## AVAILABLE TOOLS\nYou have access to {len(tools)} API tools:\n"
            f"{build_tools_list(tools)}",
            "## GUIDELINES\n"
            "- Work out what the user needs and call the tools required to do it.\n"
            "- Respect the user's permissions; say so when an operation needs more access.\n"
            "- When a tool fails, explain the problem plainly and suggest an alternative.\n"
            "- Present lists as tables and highlight important values.",
        ]

        extra = contextual_instructions(context.user_role, context.current_page)
        if extra:
            sections.append(f"## CONTEXT\n{extra}")

        return "\n\n".join(sections)

    def get_product_analysis_prompt(self) -> str:
        return PRODUCT_ANALYSIS_PROMPT

    def get_customer_service_prompt(self) -> str:
        return CUSTOMER_SERVICE_PROMPT

    def get_available_prompts(self) -> List[PromptInfo]:
        return [
            PromptInfo(name="system", description="Main marketplace assistant prompt"),
            PromptInfo(name="product_analysis", description="Product analysis and listing optimisation"),
            PromptInfo(name="customer_service", description="Customer service and support"),
        ]

    def generate_contextual_prompt(self, intent: str, context: Optional[PromptContext] = None) -> str:
        base = self.build_system_prompt(context)
        additional = {
            "product_analysis": self.get_product_analysis_prompt,
            "customer_service": self.get_customer_service_prompt,
        }.get(intent)
        return f"{base}\n\n{additional()}" if additional else base
