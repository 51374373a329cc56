"""
Intermediate representation (IR) of analysis steps for provenance tracking.

Every public service operation returns an AnalysisStep next to its result. The
step records the operation name, the parameters that were used and a Jinja2
code template which, rendered with those parameters, reproduces the call in a
report or notebook.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from jinja2 import Environment, StrictUndefined, Undefined


def _py_literal(value: Any) -> str:
    """Render a value as a Python literal; undefined template variables raise."""
    if isinstance(value, Undefined):
        value._fail_with_undefined_error()
    return repr(value)


@dataclass
class ParameterSpec:
    """Description of a single parameter of an analysis step."""

    param_type: str
    papermill_injectable: bool = False
    default_value: Any = None
    required: bool = False
    validation_rule: Optional[str] = None
    description: str = ""


@dataclass
class AnalysisStep:
    """
    One reproducible analysis step.

    Attributes:
        operation: Dotted operation identifier (e.g. "survival.stratify.compare")
        tool_name: Name of the service method that produced the step
        description: Human readable summary
        library: Module implementing the operation
        code_template: Jinja2 template rendered with ``parameters``
        imports: Import lines the rendered code needs
        parameters: Actual parameter values
        parameter_schema: ParameterSpec per parameter name
        input_entities: Names of the inputs the code expects in scope
        output_entities: Names of the variables the code defines
    """

    operation: str
    tool_name: str
    description: str
    library: str
    code_template: str
    imports: List[str] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)
    parameter_schema: Dict[str, ParameterSpec] = field(default_factory=dict)
    input_entities: List[str] = field(default_factory=list)
    output_entities: List[str] = field(default_factory=list)
    step_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def render(self) -> str:
        """Render the code template with the recorded parameters."""
        env = Environment(undefined=StrictUndefined, keep_trailing_newline=False)
        # tojson would emit null/true/false, templates render Python source
        env.filters["py"] = _py_literal
        template = env.from_string(self.code_template)
        return template.render(**self.parameters)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary (parameter specs included)."""
        return asdict(self)
