"""In-page scripts backing the element reference protocol.

The reference table lives in the page as ``window.__devBrowserRefs``: a Map
from ``e<n>`` strings to elements. Every snapshot builds a new Map and swaps it
in, so references minted by an earlier snapshot stop resolving immediately.
Numbering continues from the ``start`` the caller passes, which keeps
references unique across snapshots and navigations of one session.
"""

SNAPSHOT_JS = r"""
({ start, limit }) => {
  const maxItems = Math.max(1, Math.min(Number(limit || 200), 1000));
  let seq = Math.max(1, Math.floor(Number(start || 1)));
  const refs = new Map();

  const norm = (value, max = 120) =>
    String(value || "").replace(/\s+/g, " ").trim().slice(0, max);

  const interactiveRoles = new Set([
    "button", "link", "checkbox", "radio", "textbox", "searchbox", "combobox",
    "listbox", "option", "menuitem", "menuitemcheckbox", "menuitemradio",
    "switch", "tab", "slider", "spinbutton", "treeitem"
  ]);

  const visible = (el) => {
    if (!(el instanceof HTMLElement)) return false;
    const style = window.getComputedStyle(el);
    if (!style || style.display === "none" || style.visibility === "hidden") return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  };

  const implicitRole = (el) => {
    const tag = el.tagName.toLowerCase();
    const type = (el.getAttribute("type") || "text").toLowerCase();
    if (tag === "a") return el.hasAttribute("href") ? "link" : "generic";
    if (tag === "button" || tag === "summary") return "button";
    if (tag === "select") return el.multiple ? "listbox" : "combobox";
    if (tag === "textarea") return "textbox";
    if (tag === "input") {
      if (["button", "submit", "reset", "image"].includes(type)) return "button";
      if (type === "checkbox") return "checkbox";
      if (type === "radio") return "radio";
      if (type === "range") return "slider";
      if (type === "number") return "spinbutton";
      if (type === "search") return "searchbox";
      return "textbox";
    }
    if (/^h[1-6]$/.test(tag)) return "heading";
    if (el.isContentEditable) return "textbox";
    return "generic";
  };

  const roleOf = (el) => {
    const explicit = norm(el.getAttribute("role") || "", 40).split(" ")[0].toLowerCase();
    return explicit || implicitRole(el);
  };

  const labelTextOf = (el) => {
    const labels = [];
    try {
      if ("labels" in el && el.labels) {
        for (const labelEl of Array.from(el.labels)) {
          const text = norm(labelEl && labelEl.textContent);
          if (text) labels.push(text);
        }
      }
    } catch (_) {}
    const labelledBy = norm(el.getAttribute("aria-labelledby") || "", 400);
    if (labelledBy) {
      for (const token of labelledBy.split(" ")) {
        const target = token ? document.getElementById(token) : null;
        const text = target ? norm(target.textContent) : "";
        if (text) labels.push(text);
      }
    }
    return norm(Array.from(new Set(labels)).join(" "));
  };

  const nameOf = (el, role) => {
    const direct =
      norm(el.getAttribute("aria-label")) ||
      labelTextOf(el) ||
      norm(el.getAttribute("alt")) ||
      norm(el.getAttribute("title"));
    if (direct) return direct;
    if (role === "textbox" || role === "searchbox" || role === "combobox" || role === "spinbutton") {
      return norm(el.getAttribute("placeholder")) || norm(el.getAttribute("name"));
    }
    const tag = el.tagName.toLowerCase();
    if (tag === "input") return norm(el.value || el.getAttribute("name"));
    return norm(el.innerText || el.textContent);
  };

  const isInteractive = (el, role) => {
    const tag = el.tagName.toLowerCase();
    if (tag === "input" && (el.getAttribute("type") || "").toLowerCase() === "hidden") return false;
    if (["a", "button", "input", "textarea", "select", "summary"].includes(tag)) {
      return tag !== "a" || el.hasAttribute("href");
    }
    if (interactiveRoles.has(role)) return true;
    if (el.isContentEditable || el.hasAttribute("onclick")) return true;
    const tabindex = el.getAttribute("tabindex");
    return tabindex !== null && Number(tabindex) >= 0;
  };

  const stateOf = (el, role) => {
    const state = {};
    const tag = el.tagName.toLowerCase();
    const type = (el.getAttribute("type") || "").toLowerCase();
    if (el.disabled === true || el.getAttribute("aria-disabled") === "true") state.disabled = true;
    if (role === "checkbox" || role === "radio" || role === "switch") {
      const aria = el.getAttribute("aria-checked");
      state.checked = aria !== null ? aria === "true" : Boolean(el.checked);
    }
    const expanded = el.getAttribute("aria-expanded");
    if (expanded !== null) state.expanded = expanded === "true";
    if (tag === "input" && type && type !== "password") state.input_type = type;
    if (tag === "input" && type === "password") state.input_type = "password";
    if ((tag === "input" || tag === "textarea") && type !== "password") {
      const value = norm(el.value, 80);
      if (value) state.value = value;
    }
    if (tag === "select") {
      const selected = el.selectedOptions && el.selectedOptions[0];
      if (selected) state.value = norm(selected.textContent, 80);
    }
    return state;
  };

  const selector = [
    "a[href]", "button", "input", "textarea", "select", "summary",
    "[role]", "[onclick]", "[tabindex]", "[contenteditable]",
    "h1", "h2", "h3", "h4", "h5", "h6"
  ].join(",");

  const nodes = [];
  let truncated = false;
  for (const el of Array.from(document.querySelectorAll(selector))) {
    if (!visible(el)) continue;
    if (nodes.length >= maxItems) {
      truncated = true;
      break;
    }
    const role = roleOf(el);
    if (role === "heading") {
      const level = Number(el.getAttribute("aria-level") || el.tagName.slice(1)) || 2;
      const name = norm(el.innerText || el.textContent);
      if (name) nodes.push({ role, name, level });
      continue;
    }
    if (!isInteractive(el, role)) continue;
    const ref = `e${seq++}`;
    refs.set(ref, el);
    nodes.push(Object.assign(
      { ref, role, name: nameOf(el, role), tag: el.tagName.toLowerCase() },
      stateOf(el, role)
    ));
  }

  window.__devBrowserRefs = refs;
  return { nodes, next: seq, truncated };
}
"""

# Returns the live element for a reference, or a status string the caller
# maps onto an error: no_table, unknown_ref or stale_ref.
RESOLVE_REF_JS = r"""
(ref) => {
  const table = window.__devBrowserRefs;
  if (!(table instanceof Map)) return "no_table";
  const el = table.get(ref);
  if (!el) return "unknown_ref";
  if (!(el instanceof Element) || !el.isConnected) return "stale_ref";
  return el;
}
"""
