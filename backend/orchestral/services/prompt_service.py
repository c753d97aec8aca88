"""
Prompt Service - builds the system and user prompts of the chat pipeline.

Keeping prompt text here lets the planner and synthesizer stay focused on
parsing and orchestration.
"""

import json
from typing import List

from orchestral.models.knowledge import Citation, KnowledgeSourceMetadata, KnowledgeSourceResult


class PromptService:
    """Generates the planner and synthesizer prompts for Claude."""

    PLANNER_TEMPLATE = """You are a query planner for an AI assistant that helps project managers track their team's work.

Your job is to analyze user queries and determine which knowledge sources to query and in what order.

## Available Knowledge Sources

{sources}

## Your Task

Given a user query, create an execution plan that specifies:
1. Which sources are relevant to answering the query
2. Whether sources should be queried in parallel (same phase) or sequentially (different phases)
3. Any filters or parameters to pass to each source

## Guidelines

- Only include sources that are relevant to the query
- Use parallel execution (same phase) when sources are independent
- Use sequential execution (different phases) when later queries depend on earlier results
- Include a brief reason for each source selection
- If no sources are relevant, return an empty phases array

## Output Format

Respond with a JSON object in this exact format:
{{
  "phases": [
    {{
      "phase": 1,
      "sources": [
        {{
          "sourceId": "source-id",
          "reason": "Why this source is relevant",
          "filters": {{ "optional": "filters" }}
        }}
      ],
      "waitForPrevious": false
    }}
  ],
  "reasoning": "Overall explanation of the plan"
}}

Only respond with valid JSON, no other text."""

    SYNTHESIZER_PROMPT = """You are a helpful assistant for project managers tracking their team's work in Jira.

Your job is to synthesize information from multiple data sources into a clear, helpful response.

## Guidelines

1. **Be concise**: Get to the point quickly. Project managers are busy.
2. **Use citations**: Reference your sources using [1], [2], etc. markers.
3. **Be specific**: Use actual issue keys, names, and data from the sources.
4. **Prioritize actionable info**: Highlight what needs attention or action.
5. **Format for readability**: Use lists and structure when presenting multiple items.

## Citation Format

When referencing information from sources, use numbered citations like [1], [2].
Each citation marker should appear immediately after the relevant information.

Example: "The AUTH-123 issue is blocked by a dependency on AUTH-100 [1]."

## Response Format

Provide a natural language response that directly answers the user's question.
Include citation markers where appropriate.
Do not include a separate references section - citations will be linked automatically."""

    def planner_prompt(self, sources: List[KnowledgeSourceMetadata]) -> str:
        """System prompt listing every source the planner may choose from."""
        blocks = []
        for s in sources:
            examples = ", ".join(f"\"{q}\"" for q in s.example_queries)
            blocks.append(
                f"- **{s.id}** ({s.name}): {s.description}\n"
                f"  Capabilities: {', '.join(s.capabilities)}\n"
                f"  Example queries: {examples}"
            )
        descriptions = "\n\n".join(blocks)
        return self.PLANNER_TEMPLATE.format(sources=descriptions)

    def synthesizer_prompt(self) -> str:
        return self.SYNTHESIZER_PROMPT

    def build_source_context(
        self,
        results: List[KnowledgeSourceResult],
        citations: List[Citation],
    ) -> str:
        """
        Render source results and the citation pool for the synthesizer.

        Successful results become `## Source: <id>` sections holding their
        data as indented JSON, failed ones `## Source: <id> (Error)`.
        Citations are numbered from 1 in pool order.
        """
        sections = []
        for result in results:
            if result.error:
                sections.append(f"## Source: {result.source_id} (Error)\n{result.error}")
            elif result.data is not None:
                data = json.dumps(result.data, indent=2, default=str, ensure_ascii=False)
                sections.append(f"## Source: {result.source_id}\n{data}")

        if citations:
            lines = []
            for index, citation in enumerate(citations, start=1):
                line = f"[{index}] {citation.title} ({citation.type}: {citation.id})"
                if citation.snippet:
                    line += f" - {citation.snippet}"
                lines.append(line)
            sections.append("## Available Citations\n" + "\n".join(lines))

        return "\n\n".join(sections)

    def synthesis_user_message(self, query: str, context: str, citation_count: int) -> str:
        return (
            f"User Question: {query}\n\n"
            f"{context}\n\n"
            "Please provide a helpful response that answers the user's question.\n"
            "Use citation markers [1], [2], etc. to reference specific items.\n"
            f"Available citation indices: 1 to {citation_count}"
        )


# Global prompt service instance
prompt_service = PromptService()
