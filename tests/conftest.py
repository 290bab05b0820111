import pytest

from playercipher.decipher.base import PipelineState

# Minimal stand-in for a player bundle: shared table, helper object,
# split/join decipher function and an n function behind a browser guard.
PLAYER_JS = (
    'var _yt_player={};'
    'var XY="abc-_w8_ 1969 playerfallback".split(" ");'
    'var Wq={Rv:function(a){a.reverse()},'
    'Sw:function(a,b){var c=a[0];a[0]=a[b%a.length];a[b%a.length]=c},'
    'Sp:function(a,b){a.splice(0,b)}};'
    '_yt_player.Zx=function(a){a=a.split("");Wq.Sw(a,3);Wq.Rv(a,12);Wq.Sp(a,1);return a.join("")};'
    'var nq=function(a){var b=a.split(""),c=[];if(typeof Qz==="undefined")return a;'
    'b.reverse().forEach(function(d){c.push(d)});return c.join("")};'
    '_yt_player.Qy=function(){return nq(XY[1])};'
)

# n function whose marker sits four blocks deep, out of reach of the regexes
DEEP_PLAYER_JS = (
    'var Kd=function(a){if(a){if(a.length){for(var i=0;i<1;i++){if(i===0)'
    '{var t=new Date("1969-12-31")}}}}return a.split("").reverse().join("")};'
    'var Lm=function(){return 1};'
)

PLAYER_URL = "/s/player/deadbeef/player_ias.vflset/en_US/base.js"


@pytest.fixture
def player_js():
    return PLAYER_JS


@pytest.fixture
def deep_player_js():
    return DEEP_PLAYER_JS


@pytest.fixture
def state():
    return PipelineState()


# Player wrapped in its usual IIFE; the first date marker sits in an object
# literal, the n function itself carries the second one
WRAPPED_PLAYER_JS = (
    '(function(g){var cfg={d:"1969-12-31"};var other=function(){return cfg.d};'
    'var nq=function(a){var b="1970-01-01";return a.split("").reverse().join("")};'
    'g.nq=nq})(_yt_player);'
)


@pytest.fixture
def wrapped_player_js():
    return WRAPPED_PLAYER_JS
