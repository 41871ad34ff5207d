"""
Minimal browser client served at ``/``.

Renders buttons, checkboxes, text boxes and sliders for the common question
types, with a raw JSON box for the rest. Posts answers over the WebSocket
and re-attaches on disconnect.
"""

UI_DOCUMENT = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>__TITLE__</title>
</head>
<body>
<h1>__TITLE__</h1>
<p id="status">Connecting...</p>
<div id="questions"></div>
<script>
(function () {
  var questions = document.getElementById("questions");
  var status = document.getElementById("status");
  var ended = false;

  function button(label, onclick) {
    var b = document.createElement("button");
    b.textContent = label;
    b.onclick = onclick;
    return b;
  }

  function widgets(msg, submit) {
    var cfg = msg.config || {};
    var options = cfg.options || [];
    var nodes = [];

    if (msg.questionType === "pick_one") {
      options.forEach(function (opt) {
        nodes.push(button(opt.label || opt.id, function () { submit({selected: opt.id}); }));
      });
    } else if (msg.questionType === "pick_many") {
      var boxes = options.map(function (opt) {
        var label = document.createElement("label");
        var box = document.createElement("input");
        box.type = "checkbox";
        box.value = opt.id;
        label.append(box, " " + (opt.label || opt.id));
        nodes.push(label);
        return box;
      });
      nodes.push(button("Submit", function () {
        submit({selected: boxes.filter(function (b) { return b.checked; }).map(function (b) { return b.value; })});
      }));
    } else if (msg.questionType === "confirm") {
      nodes.push(button(cfg.yesLabel || "Yes", function () { submit({choice: "yes"}); }));
      nodes.push(button(cfg.noLabel || "No", function () { submit({choice: "no"}); }));
      if (cfg.allowCancel) nodes.push(button("Cancel", function () { submit({choice: "cancel"}); }));
    } else if (msg.questionType === "thumbs") {
      nodes.push(button("\\ud83d\\udc4d", function () { submit({choice: "up"}); }));
      nodes.push(button("\\ud83d\\udc4e", function () { submit({choice: "down"}); }));
    } else if (msg.questionType === "ask_text") {
      var text = document.createElement(cfg.multiline ? "textarea" : "input");
      text.placeholder = cfg.placeholder || "";
      nodes.push(text, button("Submit", function () { submit({text: text.value}); }));
    } else if (msg.questionType === "slider") {
      var range = document.createElement("input");
      range.type = "range";
      range.min = cfg.min;
      range.max = cfg.max;
      range.step = cfg.step || 1;
      range.value = cfg.defaultValue !== undefined ? cfg.defaultValue : cfg.min;
      var shown = document.createElement("span");
      shown.textContent = range.value;
      range.oninput = function () { shown.textContent = range.value; };
      nodes.push(range, shown, button("Submit", function () { submit({value: Number(range.value)}); }));
    } else {
      var detail = document.createElement("pre");
      detail.textContent = JSON.stringify(cfg, null, 2);
      var raw = document.createElement("textarea");
      raw.placeholder = '{"...": "..."}';
      nodes.push(detail, raw, button("Answer", function () {
        var answer;
        try { answer = JSON.parse(raw.value); } catch (e) { answer = {text: raw.value}; }
        submit(answer);
      }));
    }
    return nodes;
  }

  function render(msg) {
    var card = document.createElement("section");
    card.id = "q-" + msg.id;
    var title = document.createElement("h3");
    title.textContent = (msg.config && msg.config.question) || msg.questionType;
    card.appendChild(title);
    if (msg.config && msg.config.context) {
      var context = document.createElement("p");
      context.textContent = msg.config.context;
      card.appendChild(context);
    }
    card.append.apply(card, widgets(msg, function (answer) {
      socket.send(JSON.stringify({type: "response", id: msg.id, answer: answer}));
      card.remove();
    }));
    questions.appendChild(card);
  }

  var socket;
  function connect() {
    var scheme = location.protocol === "https:" ? "wss://" : "ws://";
    socket = new WebSocket(scheme + location.host + "/ws");
    socket.onopen = function () {
      status.textContent = "Connected";
      questions.innerHTML = "";
      socket.send(JSON.stringify({type: "connected"}));
    };
    socket.onmessage = function (event) {
      var msg = JSON.parse(event.data);
      if (msg.type === "question") {
        if (!document.getElementById("q-" + msg.id)) render(msg);
      } else if (msg.type === "cancel") {
        var card = document.getElementById("q-" + msg.id);
        if (card) card.remove();
      } else if (msg.type === "end") {
        ended = true;
        status.textContent = "Session ended. You can close this tab.";
      }
    };
    socket.onclose = function () {
      if (ended) return;
      status.textContent = "Disconnected, retrying...";
      setTimeout(connect, 1000);
    };
  }
  connect();
})();
</script>
</body>
</html>
"""


def render_document(title: str) -> str:
    safe_title = (
        title.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    )
    return UI_DOCUMENT.replace("__TITLE__", safe_title)
