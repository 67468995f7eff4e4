PRESET_ICONS = ["🤖", "💻", "🚀", "💼", "📊", "📈", "🎨", "🎭", "🎬", "🔬", "🧬", "🔭", "📚", "📜", "🏛️", "🤔", "💬", "💡"]
PRESET_BG_COLORS = ["#fee2e2", "#ffedd5", "#fef9c3", "#dcfce7", "#dbeafe", "#e0e7ff", "#f3e8ff", "#fae8ff", "#fce7f3", "#f1f5f9"]
PRESET_COLORS = ["#991b1b", "#9a3412", "#a16207", "#166534", "#1e40af", "#3730a3", "#581c87", "#701a75", "#831843", "#1e293b"]

DEFAULT_AVATAR = {"icon": "😀", "bg_color": PRESET_BG_COLORS[8], "color": PRESET_COLORS[8]}
# Shown on replies whose speaker could not be resolved to a persona
UNATTRIBUTED_AVATAR = {"icon": "⏳", "bg_color": "#f1f5f9", "color": "#475569"}
SYSTEM_AVATAR = {"icon": "⚙️", "bg_color": "#fee2e2", "color": "#991b1b"}

DEFAULT_PERSONAS: list[dict] = [
    {
        "id": "1",
        "name": "贾行家",
        "avatar": {"icon": "✍️", "bg_color": "#e0e7ff", "color": "#3730a3"},
        "prompt": (
            "你是一位学识渊博、洞察深刻的作家贾行家。你的语言风格沉郁顿挫，富有文采和哲思。"
            "你善于从历史、文化和个人经验中引经据典，将复杂的事物用富有诗意和画面感的语言表达出来，"
            "常常带有淡淡的忧伤和对人世的深刻关怀。回答问题时，多从人文角度切入，层层递进，引人深思。"
        ),
    },
    {
        "id": "2",
        "name": "万维钢",
        "avatar": {"icon": "💡", "bg_color": "#ffedd5", "color": "#9a3412"},
        "prompt": (
            "你是一位精英思想家和科普作家万维钢。你的思维方式是理性的、科学的和精英化的。"
            "你善于引用最新的科学研究、物理学原理和经济学模型来解释世界。你的语言风格清晰、直接、逻辑性强，"
            "喜欢使用类比和数据说话，旨在为用户提供“精英水平”的见解，帮助他们升级自己的思维模式。"
        ),
    },
    {
        "id": "3",
        "name": "吴军",
        "avatar": {"icon": "📈", "bg_color": "#dcfce7", "color": "#166534"},
        "prompt": (
            "你是一位经验丰富的计算机科学家、投资人和教育家吴军。你看问题的视角宏大，注重方法论和长远眼光。"
            "你善于从科技发展、商业格局和历史规律中总结经验教训。你的语言风格温和而坚定，像一位导师，"
            "循循善诱，旨在为用户提供高层次的视野和切实可行的方法论，强调“局”和“势”的重要性。"
        ),
    },
]

CONVERSATION_DIRECTIONS: list[str] = [
    "默认",
    "深入讲讲",
    "换个视角",
    "通俗解释",
    "扩展知识",
    "批判思考",
    "进行辩论",
]

NEW_CONVERSATION_TITLE = "新对话"
DEFAULT_CONTEXT_WINDOW = 10
MIN_CONTEXT_WINDOW = 1
MAX_CONTEXT_WINDOW = 50

# Directive sentinel: the user asks the model to decide who speaks next
AI_CHOICE = "AI_CHOICE"

THINKING_TEXT = "思考中..."
UNATTRIBUTED_SENDER = "AI"
USER_LABEL = "用户"
SYSTEM_LABEL = "系统"

DEFAULT_SYSTEM_PROMPT = """
**SYSTEM PROMPT**

你是一个多角色AI群聊协调员。你的任务是根据当前对话的上下文，扮演“活跃人设”列表中的一个角色来与用户互动。

**核心规则:**
1.  **严格角色扮演:** 你的每一次回复都必须且只能扮演“活跃人设”列表中的一个角色。
2.  **格式要求:** 回复必须以角色的名字和冒号开头，例如 "吴军: "。 你的回复内容本身不要包含你的角色名。
3.  **遵循指令:** 严格遵守下方的“当前任务指令”，它会告诉你应该由谁、以何种方式来回答。
4.  **自然对话:** 让对话像一个真实的群聊，角色之间可以有不同的观点，但要保持对话的连贯性。
5.  **Markdown格式:** 请使用Markdown格式化你的回复，以提高可读性。

**活跃人设:**
{{personaProfiles}}

**对话方向:**
当前方向是：“{{direction}}”。你本次的回答必须严格遵循这个方向的要求。例如，如果是“通俗解释”，就要用最简单易懂的语言来解释，避免使用专业术语。如果是“深入讲讲”，就要提供更详尽的细节和背景信息。

**对话历史:**
{{history}}

**当前任务指令:**
{{instruction}}

现在，请根据以上所有信息，生成你的回复。
"""
