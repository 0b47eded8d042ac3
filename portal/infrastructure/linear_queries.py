"""Linear GraphQL Documents — every query and mutation the portal sends to Linear.

Invariants:
    - Each document is named (query Foo / mutation Foo); the client logs by that name
    - Page sizes stay under Linear's complexity limit (teams 20, issues 100-200)
"""

# ─── Fragments ───────────────────────────────────────────────────

USER_FIELDS = "id name email avatarUrl"
STATE_BASIC = "id name type"
STATE_FULL = "id name type position color description"
LABEL_BASIC = "id name color"
LABEL_FULL = "id name color description"
PROJECT_BASIC = "id name icon color"
ISSUE_CORE = "id identifier title description url priority createdAt updatedAt"

# ─── Connection / teams ──────────────────────────────────────────

TEST_CONNECTION = """
query TestConnection {
  viewer { id name email }
  organization { id name }
}
"""

TEAMS_WITH_HIERARCHY = """
query GetTeamsWithHierarchy($after: String) {
  teams(first: 20, after: $after) {
    nodes {
      id name key description color icon createdAt updatedAt
      parent { id name key }
      organization { id name }
      states(first: 20) { nodes { id name type color position } }
      labels(first: 20) { nodes { id name color description } }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

GET_TEAM = """
query GetTeam($teamId: String!) {
  team(id: $teamId) {
    id name key description color icon timezone createdAt updatedAt
    parent { id name key }
    organization { id name }
  }
}
"""

GET_TEAM_CONFIG = f"""
query GetTeamConfig($teamId: String!) {{
  team(id: $teamId) {{
    id name key description timezone createdAt updatedAt
    states {{ nodes {{ {STATE_FULL} }} }}
    labels {{ nodes {{ {LABEL_FULL} }} }}
    projects {{ nodes {{ id name description state color icon startedAt targetDate }} }}
    members {{ nodes {{ {USER_FIELDS} active }} }}
  }}
}}
"""

GET_TEAM_STATES = f"""
query GetTeamStates($teamId: String!) {{
  team(id: $teamId) {{ states {{ nodes {{ {STATE_FULL} }} }} }}
}}
"""

GET_TEAM_LABELS = f"""
query GetTeamLabels($teamId: String!) {{
  team(id: $teamId) {{ labels {{ nodes {{ {LABEL_FULL} }} }} }}
}}
"""

GET_TEAM_MEMBERS = f"""
query GetTeamMembers($teamId: String!) {{
  team(id: $teamId) {{ members {{ nodes {{ {USER_FIELDS} active }} }} }}
}}
"""

GET_ACTIVE_CYCLES = """
query GetActiveCycle($teamId: String!) {
  team(id: $teamId) {
    cycles(filter: { isActive: { eq: true } }, first: 10) {
      nodes { id name startsAt endsAt }
    }
  }
}
"""

# ─── Issues ──────────────────────────────────────────────────────

GET_ALL_TEAM_ISSUES = f"""
query GetAllTeamIssues($teamId: ID!, $after: String) {{
  issues(filter: {{ team: {{ id: {{ eq: $teamId }} }} }}, first: 200, after: $after, orderBy: updatedAt) {{
    nodes {{
      {ISSUE_CORE}
      priorityLabel estimate dueDate completedAt
      state {{ {STATE_FULL} }}
      assignee {{ {USER_FIELDS} }}
      creator {{ {USER_FIELDS} }}
      project {{ {PROJECT_BASIC} }}
      labels {{ nodes {{ {LABEL_BASIC} }} }}
    }}
    pageInfo {{ hasNextPage endCursor }}
  }}
}}
"""

GET_ISSUES_IN_STATE = f"""
query GetIssuesInState($teamId: ID!, $stateId: ID!, $after: String) {{
  issues(filter: {{ team: {{ id: {{ eq: $teamId }} }}, state: {{ id: {{ eq: $stateId }} }} }}, first: 100, after: $after) {{
    nodes {{
      {ISSUE_CORE}
      priorityLabel
      parent {{ id identifier title }}
      state {{ {STATE_BASIC} }}
      assignee {{ {USER_FIELDS} }}
      project {{ {PROJECT_BASIC} }}
      labels {{ nodes {{ {LABEL_BASIC} }} }}
      children {{
        nodes {{
          id identifier title url priority priorityLabel
          state {{ {STATE_FULL} }}
          assignee {{ {USER_FIELDS} }}
          labels {{ nodes {{ {LABEL_BASIC} }} }}
        }}
      }}
    }}
    pageInfo {{ hasNextPage endCursor }}
  }}
}}
"""

GET_ISSUE_DETAIL = f"""
query GetIssueDetail($issueId: String!) {{
  issue(id: $issueId) {{
    {ISSUE_CORE}
    estimate dueDate completedAt priorityLabel
    state {{ {STATE_FULL} }}
    team {{ id name key }}
    project {{ id name description color icon }}
    assignee {{ {USER_FIELDS} active }}
    creator {{ {USER_FIELDS} }}
    parent {{ id identifier title }}
    labels {{ nodes {{ {LABEL_FULL} }} }}
    comments(first: 100) {{ nodes {{ id body createdAt user {{ id name avatarUrl }} }} }}
    attachments {{ nodes {{ id title url createdAt }} }}
    children(first: 100) {{
      nodes {{
        id identifier title description url priority priorityLabel
        state {{ {STATE_FULL} }}
        assignee {{ {USER_FIELDS} }}
      }}
    }}
  }}
}}
"""

GET_PARENT_ISSUE = """
query GetParentIssue($issueId: String!) {
  issue(id: $issueId) {
    id identifier title
    cycle { id name }
    team { id name }
  }
}
"""

SEARCH_ISSUES = """
query SearchIssues($query: String!) {
  issueSearch(query: $query, first: 50) {
    nodes {
      id identifier title updatedAt
      state { name }
      project { name }
      assignee { name }
    }
  }
}
"""

# ─── Mutations ───────────────────────────────────────────────────

UPDATE_ISSUE_STATE = f"""
mutation UpdateIssueState($issueId: String!, $stateId: String!) {{
  issueUpdate(id: $issueId, input: {{ stateId: $stateId }}) {{
    success
    issue {{ id identifier state {{ {STATE_BASIC} }} }}
  }}
}}
"""

ADD_COMMENT = """
mutation AddComment($issueId: String!, $body: String!) {
  commentCreate(input: { issueId: $issueId, body: $body }) {
    success
    comment { id body createdAt user { id name avatarUrl } }
  }
}
"""

ADD_LABEL = """
mutation AddLabel($issueId: String!, $labelId: String!) {
  issueAddLabel(id: $issueId, labelId: $labelId) {
    success
    issue { id labels { nodes { id name color } } }
  }
}
"""

UPDATE_ASSIGNEE = """
mutation UpdateIssueAssignee($issueId: String!, $assigneeId: String!) {
  issueUpdate(id: $issueId, input: { assigneeId: $assigneeId }) {
    success
    issue { id assignee { id name email avatarUrl } }
  }
}
"""

UPDATE_PRIORITY = """
mutation UpdateIssuePriority($issueId: String!, $priority: Int!) {
  issueUpdate(id: $issueId, input: { priority: $priority }) {
    success
    issue { id priority priorityLabel }
  }
}
"""

CREATE_ISSUE = """
mutation CreateIssue(
  $teamId: String!, $title: String!, $description: String, $priority: Int,
  $assigneeId: String, $stateId: String, $labelIds: [String!],
  $cycleId: String, $parentId: String
) {
  issueCreate(input: {
    teamId: $teamId, title: $title, description: $description, priority: $priority,
    assigneeId: $assigneeId, stateId: $stateId, labelIds: $labelIds,
    cycleId: $cycleId, parentId: $parentId
  }) {
    success
    issue {
      id identifier title description url priority priorityLabel createdAt updatedAt
      state { id name type }
      assignee { id name email avatarUrl }
      labels { nodes { id name color } }
      cycle { id name }
      parent { id identifier title }
      team { id name key }
    }
  }
}
"""
