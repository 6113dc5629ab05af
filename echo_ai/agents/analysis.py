"""
Code Analysis Agent - Reviews existing code and profiling data

Supports seven analysis kinds (static, performance, memory, complexity,
security, dependencies, coverage). Each kind has its own instructions, JSON
schema, deterministic fallback and markdown report formatter.
"""

import json
import re
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Type
import logging

from langsmith import traceable
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from echo_ai.agents.base import BaseAgent
from echo_ai.agents.config import CODE_ANALYSIS_AGENT
from echo_ai.agents.prompts import PromptTemplateEngine
from echo_ai.core.errors import BackendError
from echo_ai.core.guardrails import system_prompt
from echo_ai.core.state import AgentResponse, PromptContext
from echo_ai.tools.base import LanguageBackend

logger = logging.getLogger(__name__)

ANALYSIS_KINDS = ("performance", "memory", "complexity", "security", "dependencies", "coverage", "static")
DEFAULT_KIND = "static"
PROFILING_KINDS = ("performance", "memory")

CODE_CUES = (
    "```",
    "analyze",
    "analyse",
    "review",
    "refactor",
    "complexity",
    "security audit",
    "vulnerab",
    "memory leak",
    "profil",
    "coverage",
    "dependencies",
)

KIND_HINTS = {
    "performance": ("performance", "slow", "profil", "cpu", "lag", "bottleneck"),
    "memory": ("memory", "leak", "heap", "garbage"),
    "complexity": ("complexity", "cyclomatic", "maintainab", "nesting"),
    "security": ("security", "vulnerab", "audit", "injection", "xss"),
    "dependencies": ("dependenc", "package.json", "requirements.txt", "outdated"),
    "coverage": ("coverage", "tests", "untested"),
}

_FENCED_CODE = re.compile(r"```([\w+#.-]*)[ \t]*\n([\s\S]*?)```")


# --- Schemas ---------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StaticComplexity(_CamelModel):
    conditional_count: float = 0
    loop_count: float = 0
    function_count: float = 0
    overall_complexity: float = 1


class StaticAnalysis(_CamelModel):
    complexity: StaticComplexity = Field(default_factory=StaticComplexity)
    suggestions: List[str] = Field(default_factory=list)
    bugs: List[str] = Field(default_factory=list)
    best_practices: List[str] = Field(default_factory=list)
    security_issues: List[str] = Field(default_factory=list)


class PerformanceAnalysis(_CamelModel):
    hotspots: List[str] = Field(default_factory=list)
    patterns: List[str] = Field(default_factory=list)
    bottlenecks: List[str] = Field(default_factory=list)
    optimizations: List[str] = Field(default_factory=list)
    resource_usage: Dict[str, Any] = Field(default_factory=dict)
    environment_specific: Dict[str, Any] = Field(default_factory=dict)


class MemoryAnalysis(_CamelModel):
    leaks: List[str] = Field(default_factory=list)
    large_objects: List[str] = Field(default_factory=list)
    gc_patterns: List[str] = Field(default_factory=list)
    trends: List[str] = Field(default_factory=list)
    optimizations: List[str] = Field(default_factory=list)


class Duplication(_CamelModel):
    percentage: float = 0
    duplicated_blocks: float = 0


class NestingDepth(_CamelModel):
    max: float = 0
    average: float = 0


class ComplexityAnalysis(_CamelModel):
    cyclomatic_complexity: Dict[str, float] = Field(default_factory=dict)
    cognitive_complexity: Dict[str, float] = Field(default_factory=dict)
    maintainability_index: float = 100
    duplication: Duplication = Field(default_factory=Duplication)
    dependency_complexity: float = 1
    nesting_depth: NestingDepth = Field(default_factory=NestingDepth)
    recommendations: List[str] = Field(default_factory=list)


class SecurityAnalysis(_CamelModel):
    high_risk_issues: List[str] = Field(default_factory=list)
    medium_risk_issues: List[str] = Field(default_factory=list)
    low_risk_issues: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    security_score: float = 50
    critical_vulnerabilities: int = 0


class DependencyAnalysis(_CamelModel):
    direct_dependencies: List[str] = Field(default_factory=list)
    vulnerable_dependencies: List[str] = Field(default_factory=list)
    update_recommendations: List[str] = Field(default_factory=list)
    compatibility_issues: List[str] = Field(default_factory=list)
    unused_dependencies: List[str] = Field(default_factory=list)


class CoverageAnalysis(_CamelModel):
    statement_coverage: float = 0
    branch_coverage: float = 0
    function_coverage: float = 0
    uncovered_sections: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


# --- Detection helpers -----------------------------------------------------


def detect_language(code: Optional[str]) -> str:
    """Best-effort language guess from code patterns; javascript when nothing matches."""
    if not code:
        return "javascript"
    src = code.lower()
    if "func " in src and "package " in src:
        return "go"
    if "def " in src and (":" in src or "__init__" in src):
        return "python"
    if "public class " in src or "public static void" in src:
        return "java"
    if "<?php" in src:
        return "php"
    if "#include" in src:
        return "cpp"
    if "fn " in src and "let mut " in src:
        return "rust"
    if "interface " in src and "<t>" in src:
        return "typescript"
    return "javascript"


def detect_profiler_type(profiling_data: Any) -> str:
    if not isinstance(profiling_data, dict):
        return "generic"
    if "spark" in profiling_data or "timings" in profiling_data:
        return "minecraft"
    if "perf_events" in profiling_data or "strace" in profiling_data:
        return "linux-perf"
    if "jfr" in profiling_data or "async_profiler" in profiling_data:
        return "java-profiler"
    if "v8Profile" in profiling_data or "clinic" in profiling_data:
        return "node-profiler"
    return "generic"


def profiler_recommendations(environment: Optional[str]) -> List[str]:
    recommendations = ["To analyze performance, please provide profiling data from any of these tools:"]
    if environment == "minecraft":
        recommendations += ["• Spark: /spark profiler", "• Paper Timings: /timings report"]
    elif environment == "linux":
        recommendations += ["• Linux perf: perf record -F 99 -p <pid>", "• strace: strace -c -p <pid>"]
    elif environment == "java":
        recommendations += ["• Java Flight Recorder: jcmd <pid> JFR.start", "• VisualVM: Connect to JMX port"]
    else:
        recommendations += ["• Node.js: node --prof your-script.js", "• Chrome DevTools Performance panel"]
    return recommendations


def extract_code(message: str) -> tuple[Optional[str], Optional[str]]:
    """First fenced block in ``message`` as (code, fence language tag)."""
    match = _FENCED_CODE.search(message or "")
    if not match:
        return None, None
    code = match.group(2).strip()
    return (code or None), (match.group(1).lower() or None)


def kind_from_reply(reply: str) -> Optional[str]:
    lowered = (reply or "").lower()
    for kind in ANALYSIS_KINDS:
        if kind in lowered:
            return kind
    return None


def kind_from_keywords(message: str) -> str:
    msg = (message or "").lower()
    for kind, hints in KIND_HINTS.items():
        if any(hint in msg for hint in hints):
            return kind
    return DEFAULT_KIND


# --- Fallbacks -------------------------------------------------------------


def _static_fallback(code: str) -> StaticAnalysis:
    return StaticAnalysis(
        complexity=StaticComplexity(
            conditional_count=code.count("if"),
            loop_count=code.count("for") + code.count("while"),
            function_count=code.count("function") + len(re.findall(r"\bdef\s", code)),
            overall_complexity=1,
        ),
        suggestions=["Could not fully analyze the code"],
        best_practices=["Consider following standard coding conventions"],
    )


def _performance_fallback(code: str) -> PerformanceAnalysis:
    return PerformanceAnalysis(
        hotspots=["⚠️ Error analyzing performance data"],
        patterns=["The performance data could not be analyzed correctly"],
        bottlenecks=["Try providing the performance data in a different format"],
        optimizations=["Use one of the recommended profiling tools"],
        resource_usage={"error": "Unable to analyze resource usage"},
        environment_specific={"error": "Unable to provide environment-specific insights"},
    )


def _memory_fallback(code: str) -> MemoryAnalysis:
    return MemoryAnalysis(
        leaks=["⚠️ Error analyzing memory data"],
        large_objects=["Could not process the memory profile data"],
        gc_patterns=["Could not analyze garbage collection patterns"],
        trends=["Memory usage trends could not be determined"],
        optimizations=["Provide memory data in a standard heap snapshot format"],
    )


def _complexity_fallback(code: str) -> ComplexityAnalysis:
    lines = len(code.split("\n"))
    conditionals = len(re.findall(r"if\s*\(", code))
    loops = len(re.findall(r"for\s*\(", code)) + len(re.findall(r"while\s*\(", code))
    return ComplexityAnalysis(
        cyclomatic_complexity={"overall": conditionals + loops + 1},
        cognitive_complexity={"overall": conditionals * 2 + loops * 2},
        maintainability_index=max(0, 100 - lines / 10),
        duplication=Duplication(percentage=0, duplicated_blocks=0),
        dependency_complexity=1,
        nesting_depth=NestingDepth(max=2, average=1),
        recommendations=[
            "Consider breaking complex functions into smaller ones",
            "Review conditional logic for simplification",
        ],
    )


def _security_fallback(code: str) -> SecurityAnalysis:
    return SecurityAnalysis(
        high_risk_issues=["Error parsing security analysis - manual review recommended"],
        recommendations=["Request a manual security review", "Check for input validation issues"],
        security_score=50,
        critical_vulnerabilities=0,
    )


def _dependencies_fallback(code: str) -> DependencyAnalysis:
    return DependencyAnalysis(
        direct_dependencies=["Could not analyze dependencies"],
        update_recommendations=["Try providing a package.json or requirements.txt file"],
    )


def _coverage_fallback(code: str) -> CoverageAnalysis:
    return CoverageAnalysis(
        uncovered_sections=["Could not analyze code coverage"],
        recommendations=["Provide test files along with the code"],
    )


# --- Formatters ------------------------------------------------------------


def _num(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _bullets(items: List[Any], prefix: str = "") -> str:
    return "".join(f"• {prefix}{item}\n" for item in items)


def _scores(scores: Dict[str, float]) -> str:
    return "".join(f"• {name}: {_num(score)}\n" for name, score in scores.items())


def format_static(a: StaticAnalysis) -> str:
    report = "**STATIC Analysis Report**\n\n"
    report += "**Complexity Metrics:**\n"
    report += f"• Conditional statements: {_num(a.complexity.conditional_count)}\n"
    report += f"• Loops: {_num(a.complexity.loop_count)}\n"
    report += f"• Functions: {_num(a.complexity.function_count)}\n"
    report += f"• Overall complexity score: {_num(a.complexity.overall_complexity)}\n\n"
    if a.suggestions:
        report += "**Suggestions:**\n" + _bullets(a.suggestions) + "\n"
    if a.bugs:
        report += "**Potential Bugs:**\n" + _bullets(a.bugs) + "\n"
    if a.security_issues:
        report += "**Security Concerns:**\n" + _bullets(a.security_issues, "🚨 ")
    return report


def format_performance(a: PerformanceAnalysis) -> str:
    report = "**PERFORMANCE Analysis Report**\n\n"
    report += "**🔥 Performance Hotspots:**\n" + _bullets(a.hotspots)
    report += "\n**📈 Performance Patterns:**\n" + _bullets(a.patterns)
    report += "\n**🚧 Bottlenecks:**\n" + _bullets(a.bottlenecks)
    report += "\n**💡 Optimization Suggestions:**\n" + _bullets(a.optimizations)
    return report


def format_memory(a: MemoryAnalysis) -> str:
    report = "**MEMORY Analysis Report**\n\n"
    report += "**🔍 Memory Leak Indicators:**\n" + _bullets(a.leaks)
    report += "\n**📦 Large Object Allocations:**\n" + _bullets(a.large_objects)
    report += "\n**♻️ GC Patterns:**\n" + _bullets(a.gc_patterns)
    report += "\n**📊 Memory Trends:**\n" + _bullets(a.trends)
    if a.optimizations:
        report += "\n**💡 Optimization Suggestions:**\n" + _bullets(a.optimizations)
    return report


def format_complexity(a: ComplexityAnalysis) -> str:
    report = "**COMPLEXITY Analysis Report**\n\n"
    report += "**🔄 Cyclomatic Complexity:**\n" + _scores(a.cyclomatic_complexity)
    report += "\n**🧠 Cognitive Complexity:**\n" + _scores(a.cognitive_complexity)
    report += "\n**🔧 Maintainability Index:**\n"
    report += f"• Overall: {_num(round(a.maintainability_index, 1))}\n"
    if a.recommendations:
        report += "\n**💡 Recommendations:**\n" + _bullets(a.recommendations)
    return report


def format_security(a: SecurityAnalysis) -> str:
    report = "**SECURITY Analysis Report**\n\n"
    report += "**🚨 High Risk Issues:**\n" + _bullets(a.high_risk_issues)
    report += "\n**⚠️ Medium Risk Issues:**\n" + _bullets(a.medium_risk_issues)
    report += "\n**🔒 Security Recommendations:**\n" + _bullets(a.recommendations)
    report += f"\n**Security Score:** {_num(a.security_score)}/100\n"
    return report


def format_dependencies(a: DependencyAnalysis) -> str:
    report = "**DEPENDENCIES Analysis Report**\n\n"
    report += "**📦 Direct Dependencies:**\n" + _bullets(a.direct_dependencies)
    report += "\n**⚠️ Vulnerable Dependencies:**\n" + _bullets(a.vulnerable_dependencies)
    report += "\n**💡 Update Recommendations:**\n" + _bullets(a.update_recommendations)
    return report


def format_coverage(a: CoverageAnalysis) -> str:
    report = "**COVERAGE Analysis Report**\n\n"
    report += "**📊 Coverage Metrics:**\n"
    report += f"• Statement Coverage: {_num(a.statement_coverage)}%\n"
    report += f"• Branch Coverage: {_num(a.branch_coverage)}%\n"
    report += f"• Function Coverage: {_num(a.function_coverage)}%\n"
    report += "\n**🔍 Uncovered Areas:**\n" + _bullets(a.uncovered_sections)
    return report


# --- Kind table ------------------------------------------------------------


class AnalysisSpec(NamedTuple):
    schema: Type[BaseModel]
    instructions: str
    json_shape: str
    fallback: Callable[[str], BaseModel]
    formatter: Callable[[Any], str]


ANALYSIS_SPECS: Dict[str, AnalysisSpec] = {
    "static": AnalysisSpec(
        StaticAnalysis,
        "Perform a general code analysis. Identify:\n"
        "1. Code quality issues\n2. Potential bugs\n3. Performance concerns\n"
        "4. Style and best practice violations\n5. Improvement suggestions",
        '{"complexity": {"conditionalCount": number, "loopCount": number, "functionCount": number, '
        '"overallComplexity": number}, "suggestions": [], "bugs": [], "bestPractices": [], "securityIssues": []}',
        _static_fallback,
        format_static,
    ),
    "performance": AnalysisSpec(
        PerformanceAnalysis,
        "Analyze the profiling data and report hot functions and paths, CPU usage patterns, "
        "performance bottlenecks and optimization suggestions.",
        '{"hotspots": [], "patterns": [], "bottlenecks": [], "optimizations": [], '
        '"resourceUsage": {}, "environmentSpecific": {}}',
        _performance_fallback,
        format_performance,
    ),
    "memory": AnalysisSpec(
        MemoryAnalysis,
        "Analyze the memory profiling data and provide:\n"
        "1. Memory leak indicators\n2. Large object allocations\n3. Garbage collection patterns\n"
        "4. Memory usage trends\n5. Optimization suggestions",
        '{"leaks": [], "largeObjects": [], "gcPatterns": [], "trends": [], "optimizations": []}',
        _memory_fallback,
        format_memory,
    ),
    "complexity": AnalysisSpec(
        ComplexityAnalysis,
        "Perform advanced complexity analysis and provide:\n"
        "1. Cyclomatic complexity per function\n2. Cognitive complexity metrics\n3. Maintainability index\n"
        "4. Code duplication assessment\n5. Dependency graph complexity\n6. Nesting depth analysis",
        '{"cyclomaticComplexity": {"functionName": number}, "cognitiveComplexity": {"functionName": number}, '
        '"maintainabilityIndex": number, "duplication": {"percentage": number, "duplicatedBlocks": number}, '
        '"dependencyComplexity": number, "nestingDepth": {"max": number, "average": number}, "recommendations": []}',
        _complexity_fallback,
        format_complexity,
    ),
    "security": AnalysisSpec(
        SecurityAnalysis,
        "Perform a security audit and provide:\n"
        "1. Known vulnerability patterns\n2. Input validation issues\n3. Authentication/authorization concerns\n"
        "4. Data exposure risks\n5. Dependency security status\n6. Secure coding guideline violations",
        '{"highRiskIssues": [], "mediumRiskIssues": [], "lowRiskIssues": [], "recommendations": [], '
        '"securityScore": number, "criticalVulnerabilities": number}',
        _security_fallback,
        format_security,
    ),
    "dependencies": AnalysisSpec(
        DependencyAnalysis,
        "Analyze the dependencies and provide:\n"
        "1. Direct dependencies\n2. Transitive dependencies\n3. Version compatibility issues\n"
        "4. Known vulnerabilities\n5. Update recommendations\n6. Unused dependencies",
        '{"directDependencies": [], "vulnerableDependencies": [], "updateRecommendations": [], '
        '"compatibilityIssues": [], "unusedDependencies": []}',
        _dependencies_fallback,
        format_dependencies,
    ),
    "coverage": AnalysisSpec(
        CoverageAnalysis,
        "Analyze test coverage and provide:\n"
        "1. Statement coverage\n2. Branch coverage\n3. Function coverage\n4. Line coverage\n"
        "5. Uncovered code sections\n6. Testing gaps and recommendations",
        '{"statementCoverage": number, "branchCoverage": number, "functionCoverage": number, '
        '"uncoveredSections": [], "recommendations": []}',
        _coverage_fallback,
        format_coverage,
    ),
}

CONTEXT_REQUESTS = {
    "performance": "## Performance Analysis Request\n\nPlease provide profiling data to analyze performance issues.",
    "memory": (
        "## Memory Analysis Request\n\n"
        "Please provide a heap snapshot or memory profile to analyze memory usage.\n"
        "• You can use Chrome DevTools Memory panel\n"
        "• Or use node --inspect and Chrome DevTools for Node.js"
    ),
    "static": "## Code Analysis Request\n\nPlease share the code snippet you'd like me to analyze.",
    "complexity": "## Complexity Analysis Request\n\nPlease share the code you'd like me to analyze for complexity metrics.",
    "security": "## Security Analysis Request\n\nPlease provide the code you'd like me to audit for security concerns.",
    "dependencies": (
        "## Dependencies Analysis Request\n\n"
        "Please share your dependency file (package.json, requirements.txt, etc.) for analysis."
    ),
    "coverage": "## Coverage Analysis Request\n\nPlease provide your code and test files to analyze test coverage.",
}

CODE_BLOCK_HINT = "\n\nYou can paste your code using a code block like this:\n\n```language\n// Your code here\n```"


class CodeAnalysisAgent(BaseAgent):
    def __init__(self, backend: LanguageBackend, prompts: PromptTemplateEngine, bot_name: Optional[str] = None):
        super().__init__(backend, prompts, CODE_ANALYSIS_AGENT, bot_name)

    async def can_handle(self, message: str) -> bool:
        msg = (message or "").lower()
        # Generation and boilerplate requests are not analysis
        if "generate" in msg and any(w in msg for w in ("code", "example", "sample")):
            return False
        if any(w in msg for w in ("create", "make")) and any(
            w in msg for w in ("boilerplate", "starter", "template")
        ):
            return False
        return any(cue in msg for cue in CODE_CUES)

    @traceable(name="CodeAnalysisAgent", metadata={"agent": "CodeAnalysisAgent", "tags": ["agent", "code", "analysis"]})
    async def process(
        self, message: str, user_id: str, context: Optional[Dict[str, Any]] = None
    ) -> AgentResponse:
        context = context or {}
        kind = await self.determine_kind(message)

        fenced_code, fence_language = extract_code(message)
        code = context.get("code") or fenced_code
        language = (fence_language or context.get("language") or detect_language(code)).lower()
        profiling_data = context.get("profiling_data")
        metadata = {"type": "code_analysis", "analysis_kind": kind, "language": language}

        missing = not profiling_data if kind in PROFILING_KINDS else not code
        if missing:
            logger.info(f"CodeAnalysisAgent: {kind} analysis missing input for {user_id}")
            return AgentResponse(
                content=self._request_context(kind, profiling_data, context),
                needs_more_context=True,
                metadata=metadata,
            )

        analysis = await self.analyze(kind, code or "", language, profiling_data, message)
        return AgentResponse(content=ANALYSIS_SPECS[kind].formatter(analysis), metadata=metadata)

    async def determine_kind(self, message: str) -> str:
        try:
            reply = await self._complete(
                "Determine the type of analysis being requested:\n"
                f'Message: "{message}"\n'
                f"Available types: {', '.join(ANALYSIS_KINDS)}\n\n"
                "Consider:\n"
                "1. Is it asking for performance profiling?\n"
                "2. Is it about memory usage?\n"
                "3. Is it a basic code review?\n"
                "4. Is it about security?\n"
                "5. Is it about dependencies?\n"
                "6. Is it about test coverage?\n\n"
                f"Return only one of: {', '.join(ANALYSIS_KINDS)}",
                temperature=0.0,
                max_tokens=10,
            )
        except BackendError as e:
            logger.warning(f"CodeAnalysisAgent: kind classification failed, using keywords ({e})")
            return kind_from_keywords(message)
        return kind_from_reply(reply) or kind_from_keywords(message)

    async def analyze(
        self,
        kind: str,
        code: str,
        language: str,
        profiling_data: Any = None,
        message: str = "",
    ) -> BaseModel:
        spec = ANALYSIS_SPECS[kind]
        instructions = spec.instructions
        if kind == "performance":
            instructions = f"The data comes from a {detect_profiler_type(profiling_data)} profiler. " + instructions
        prompt = self.prompts.render(
            "code_analysis",
            PromptContext(message=message, message_type="code"),
            kind=kind,
            instructions=instructions,
            profiling_data=json.dumps(profiling_data, indent=2, default=str) if profiling_data else "",
            language=language,
            code=code,
            json_shape=spec.json_shape,
        )
        return await self._complete_structured(
            prompt,
            spec.schema,
            lambda: spec.fallback(code),
            system_prompt=system_prompt("analysis", self.bot_name),
        )

    @staticmethod
    def _request_context(kind: str, profiling_data: Any, context: Dict[str, Any]) -> str:
        guidance = CONTEXT_REQUESTS.get(kind, CONTEXT_REQUESTS[DEFAULT_KIND])
        if kind == "performance":
            environment = context.get("environment")
            if environment is None and isinstance(profiling_data, dict):
                environment = (profiling_data.get("environment") or {}).get("type")
            return guidance + "\n\n" + "\n".join(profiler_recommendations(environment))
        if kind in PROFILING_KINDS:
            return guidance
        return guidance + CODE_BLOCK_HINT
